import os
import pathlib
import subprocess
import sys
import tempfile
import unittest
from dataclasses import replace
from unittest import mock

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from iota_wallet import iota_cli  # noqa: E402
from iota_wallet.config import DEFAULT_CONFIG, SignerConfig  # noqa: E402
from iota_wallet.errors import IotaWalletError  # noqa: E402
from iota_wallet.read_tools import ReadTools  # noqa: E402


class ParseJsonFromStdoutTests(unittest.TestCase):
    def test_parses_direct_json(self) -> None:
        self.assertEqual(iota_cli.parse_json_from_stdout('{"ok":true}'), {"ok": True})
        self.assertEqual(iota_cli.parse_json_from_stdout('  "mainnet"\n'), "mainnet")

    def test_parses_trailing_object_after_warning(self) -> None:
        stdout = "[warning] Client/Server api version mismatch\n{\"ok\": true, \"items\": [1, 2]}"
        self.assertEqual(iota_cli.parse_json_from_stdout(stdout), {"ok": True, "items": [1, 2]})

    def test_parses_trailing_array_and_string(self) -> None:
        self.assertEqual(iota_cli.parse_json_from_stdout("note: {not json}\n[1, 2]"), [1, 2])
        self.assertEqual(iota_cli.parse_json_from_stdout('warning "quoted" text\n"devnet"'), "devnet")

    def test_rejects_output_without_json_suffix(self) -> None:
        for stdout in ["not-json", "{\"ok\": true}\ntrailing words", ""]:
            with self.subTest(stdout=stdout):
                with self.assertRaises(IotaWalletError) as ctx:
                    iota_cli.parse_json_from_stdout(stdout)
                self.assertEqual(ctx.exception.code, "cli_parse_error")

    def test_deeply_nested_output_is_a_parse_error(self) -> None:
        for stdout in ["[" * 5000, "warning\n" + "[" * 5000, "{\"a\": " * 3000]:
            with self.subTest(size=len(stdout)):
                with self.assertRaises(IotaWalletError) as ctx:
                    iota_cli.parse_json_from_stdout(stdout)
                self.assertEqual(ctx.exception.code, "cli_parse_error")

    def test_nested_noise_before_trailing_json(self) -> None:
        stdout = "[" * 3000 + "\n{\"ok\": true}"
        self.assertEqual(iota_cli.parse_json_from_stdout(stdout), {"ok": True})

    def test_parse_error_sample_is_truncated(self) -> None:
        with self.assertRaises(IotaWalletError) as ctx:
            iota_cli.parse_json_from_stdout("x" * 5000)
        self.assertEqual(len(ctx.exception.details["sample"]), 500)


class CommandAllowListTests(unittest.TestCase):
    def test_resolves_leading_command_after_value_flags(self) -> None:
        self.assertEqual(iota_cli.resolve_top_level_command(["--client.env", "mainnet", "client", "gas"]), "client")
        self.assertEqual(iota_cli.resolve_top_level_command(["--client.config", "client", "keytool"]), "keytool")
        self.assertEqual(iota_cli.resolve_top_level_command(["--client.env=mainnet", "move"]), "move")
        self.assertIsNone(iota_cli.resolve_top_level_command(["--client.env", "client"]))

    def test_env_value_is_not_mistaken_for_command(self) -> None:
        with self.assertRaises(IotaWalletError) as ctx:
            iota_cli.assert_safe_iota_args(["--client.env", "client", "move", "publish"])
        self.assertEqual(ctx.exception.code, "invalid_input")

    def test_disallowed_command_never_spawns(self) -> None:
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            return mock.Mock(returncode=0, stdout="{}", stderr="")

        with mock.patch.object(iota_cli.subprocess, "run", side_effect=fake_run):
            for args in [[], ["move", "publish"], ["--client.env", "mainnet", "start"], ["--json"]]:
                with self.subTest(args=args):
                    with self.assertRaises(IotaWalletError) as ctx:
                        iota_cli.exec_iota_cli(DEFAULT_CONFIG, args)
                    self.assertEqual(ctx.exception.code, "invalid_input")
        self.assertEqual(calls, [])


class ExecIotaCliTests(unittest.TestCase):
    def test_appends_json_flag_and_never_uses_shell(self) -> None:
        with mock.patch.object(
            iota_cli.subprocess, "run", return_value=mock.Mock(returncode=0, stdout='{"a": 1}', stderr="")
        ) as run_mock:
            result = iota_cli.exec_iota_cli(DEFAULT_CONFIG, ["client", "gas"])

        self.assertEqual(result, {"a": 1})
        cmd = run_mock.call_args.args[0]
        self.assertEqual(cmd, ["iota", "client", "gas", "--json"])
        kwargs = run_mock.call_args.kwargs
        self.assertFalse(kwargs["shell"])
        self.assertEqual(kwargs["timeout"], 30.0)
        self.assertEqual(kwargs["encoding"], "utf-8")
        self.assertEqual(kwargs["errors"], "replace")

    def test_does_not_duplicate_json_flag(self) -> None:
        with mock.patch.object(
            iota_cli.subprocess, "run", return_value=mock.Mock(returncode=0, stdout="[]", stderr="")
        ) as run_mock:
            iota_cli.exec_iota_cli(DEFAULT_CONFIG, ["client", "gas", "--json"])
        self.assertEqual(run_mock.call_args.args[0].count("--json"), 1)

    def test_raw_text_mode_returns_trimmed_stdout(self) -> None:
        with mock.patch.object(
            iota_cli.subprocess, "run", return_value=mock.Mock(returncode=0, stdout="  QUJD\n", stderr="")
        ) as run_mock:
            result = iota_cli.exec_iota_cli(DEFAULT_CONFIG, ["client", "pay-iota"], expect_json=False)
        self.assertEqual(result, "QUJD")
        self.assertNotIn("--json", run_mock.call_args.args[0])

    def test_timeout_maps_to_cli_timeout(self) -> None:
        cfg = replace(DEFAULT_CONFIG, command_timeout_ms=1500)
        with mock.patch.object(
            iota_cli.subprocess, "run", side_effect=subprocess.TimeoutExpired(cmd=["iota"], timeout=1.5)
        ) as run_mock:
            with self.assertRaises(IotaWalletError) as ctx:
                iota_cli.exec_iota_cli(cfg, ["client", "gas"])
        self.assertEqual(ctx.exception.code, "cli_timeout")
        self.assertEqual(ctx.exception.details["timeoutMs"], 1500)
        self.assertEqual(run_mock.call_args.kwargs["timeout"], 1.5)

    def test_nonzero_exit_maps_to_cli_failed_with_truncated_output(self) -> None:
        with mock.patch.object(
            iota_cli.subprocess,
            "run",
            return_value=mock.Mock(returncode=3, stdout="o" * 5000, stderr="insufficient gas"),
        ):
            with self.assertRaises(IotaWalletError) as ctx:
                iota_cli.exec_iota_cli(DEFAULT_CONFIG, ["client", "gas"])
        self.assertEqual(ctx.exception.code, "cli_failed")
        details = ctx.exception.details
        self.assertEqual(details["stderr"], "insufficient gas")
        self.assertEqual(len(details["stdout"]), 2000)
        self.assertEqual(details["args"], ["client", "gas", "--json"])

    def test_spawn_failure_maps_to_cli_failed(self) -> None:
        with mock.patch.object(iota_cli.subprocess, "run", side_effect=FileNotFoundError("iota")):
            with self.assertRaises(IotaWalletError) as ctx:
                iota_cli.exec_iota_cli(DEFAULT_CONFIG, ["client", "gas"])
        self.assertEqual(ctx.exception.code, "cli_failed")
        self.assertEqual(ctx.exception.message, "failed to start iota command")

    def test_real_process_timeout_is_killed(self) -> None:
        sleeper = pathlib.Path("/bin/sleep")
        if not sleeper.exists():
            self.skipTest("/bin/sleep is required")
        cfg = replace(DEFAULT_CONFIG, cli_path=str(sleeper), command_timeout_ms=1000)
        with mock.patch.object(iota_cli, "assert_safe_iota_args"):
            with self.assertRaises(IotaWalletError) as ctx:
                iota_cli.exec_iota_cli(cfg, ["5"], expect_json=False)
        self.assertEqual(ctx.exception.code, "cli_timeout")


@unittest.skipIf(os.name == "nt" or not pathlib.Path("/bin/sh").exists(), "POSIX shell scripts are required")
class NonUtf8OutputTests(unittest.TestCase):
    """The fake CLI ignores its arguments and prints raw bytes."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _fake_cli(self, body: str) -> str:
        script = pathlib.Path(self._tmp.name) / "iota"
        script.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        script.chmod(0o755)
        return str(script)

    def test_undecodable_bytes_before_json_still_parse(self) -> None:
        cfg = replace(DEFAULT_CONFIG, cli_path=self._fake_cli("printf '\\377\\376{}'"))
        self.assertEqual(iota_cli.exec_iota_cli(cfg, ["client", "gas"]), {})

    def test_undecodable_bytes_only_is_a_parse_error(self) -> None:
        cfg = replace(DEFAULT_CONFIG, cli_path=self._fake_cli("printf '\\377\\376 not json'"))
        with self.assertRaises(IotaWalletError) as ctx:
            iota_cli.exec_iota_cli(cfg, ["client", "gas"])
        self.assertEqual(ctx.exception.code, "cli_parse_error")
        self.assertIn("\ufffd", ctx.exception.details["sample"])

    def test_undecodable_stderr_on_failure(self) -> None:
        cfg = replace(DEFAULT_CONFIG, cli_path=self._fake_cli("printf '\\377boom' >&2\nexit 4"))
        with self.assertRaises(IotaWalletError) as ctx:
            iota_cli.exec_iota_cli(cfg, ["client", "gas"])
        self.assertEqual(ctx.exception.code, "cli_failed")
        self.assertEqual(ctx.exception.details["returnCode"], 4)
        self.assertEqual(ctx.exception.details["stderr"], "\ufffdboom")

    def test_read_tool_reports_parse_error_envelope(self) -> None:
        cfg = replace(DEFAULT_CONFIG, cli_path=self._fake_cli("printf '\\377\\376'"))
        res = ReadTools(cfg).get_gas({})
        self.assertFalse(res["ok"])
        self.assertEqual(res["error"]["code"], "cli_parse_error")


class ArgBuilderTests(unittest.TestCase):
    def test_network_prefix(self) -> None:
        args = iota_cli.build_client_args_with_network(replace(DEFAULT_CONFIG, default_network="testnet"), ["client", "gas"])
        self.assertEqual(args, ["--client.env", "testnet", "client", "gas"])

    def test_custom_network_has_no_prefix(self) -> None:
        base = ["client", "gas"]
        args = iota_cli.build_client_args_with_network(replace(DEFAULT_CONFIG, default_network="custom"), base)
        self.assertEqual(args, ["client", "gas"])
        args.append("x")
        self.assertEqual(base, ["client", "gas"])

    def test_keystore_path_is_inserted_for_keytool(self) -> None:
        cfg = replace(DEFAULT_CONFIG, signer=SignerConfig(keystore_path="/keys/iota.keystore"))
        self.assertEqual(
            iota_cli.build_keytool_args(cfg, ["keytool", "sign", "--data", "QUJD"]),
            ["keytool", "--keystore-path", "/keys/iota.keystore", "sign", "--data", "QUJD"],
        )
        self.assertEqual(iota_cli.build_keytool_args(DEFAULT_CONFIG, ["keytool", "sign"]), ["keytool", "sign"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
