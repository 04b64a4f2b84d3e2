from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
import io
import tempfile
import unittest

from axbuild import cli
from axbuild.options import BusType, NetDevType, VMOptions
from axbuild.runner import runner_command


class CliTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name)
        self.target_dir = self.workspace / "target"

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _main(self, argv: list[str], env: dict[str, str] | None = None) -> tuple[int, str, str]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = cli.main(argv, env=env or {})
        return code, stdout.getvalue(), stderr.getvalue()


class BuildCommandDryRunTests(CliTestCase):
    def test_build_dry_run_outputs_command_and_environment(self) -> None:
        code, output, _ = self._main(
            [
                "axbuild", "build", "--dry-run",
                "--target-dir", str(self.target_dir),
                "-A", "aarch64", "--cpus", "2",
                "-p", "arceos-helloworld", "--features", "axstd/smp",
            ]
        )
        self.assertEqual(code, 0)
        self.assertIn("[dry-run] AX_SMP=2", output)
        self.assertIn("[dry-run] AX_PLATFORM=aarch64-qemu-virt", output)
        self.assertIn("[dry-run] AX_TARGET=aarch64-unknown-none", output)
        self.assertIn("-C link-arg=-no-pie", output)
        self.assertIn(
            f"[dry-run] cargo build -p arceos-helloworld --features axstd/smp --target-dir {self.target_dir}",
            output,
        )
        self.assertIn("--target aarch64-unknown-none", output)
        self.assertTrue((self.target_dir / "aarch64-unknown-none" / "debug" / "axconfig.toml").exists())

    def test_alias_and_release_profile(self) -> None:
        code, output, _ = self._main(["b", "--dry-run", "-r", "--target-dir", str(self.target_dir)])
        self.assertEqual(code, 0)
        self.assertIn("[dry-run] AX_MODE=release", output)
        self.assertIn("[dry-run] AX_PLATFORM=dummy", output)
        self.assertNotIn("RUSTFLAGS", output)

    def test_environment_defaults(self) -> None:
        code, output, _ = self._main(
            ["build", "--dry-run", "--target-dir", str(self.target_dir)],
            env={"PLATFORM": "aarch64-raspi4", "CPUS": "3", "LOG": "info", "SOFT_FLOAT": "true"},
        )
        self.assertEqual(code, 0)
        self.assertIn("[dry-run] AX_PLATFORM=aarch64-raspi4", output)
        self.assertIn("[dry-run] AX_SMP=3", output)
        self.assertIn("[dry-run] AX_LOG=INFO", output)
        self.assertIn("[dry-run] AX_TARGET=aarch64-unknown-none-softfloat", output)

    def test_command_line_beats_environment(self) -> None:
        code, output, _ = self._main(
            ["build", "--dry-run", "--target-dir", str(self.target_dir), "-A", "riscv64"],
            env={"PLATFORM": "aarch64-raspi4"},
        )
        self.assertEqual(code, 0)
        self.assertIn("[dry-run] AX_PLATFORM=riscv64-qemu-virt", output)

    def test_target_option_is_ignored(self) -> None:
        code, output, errors = self._main(
            ["check", "--dry-run", "--target-dir", str(self.target_dir), "--target", "x86_64-unknown-linux-gnu"]
        )
        self.assertEqual(code, 0)
        self.assertIn("warning: `--target` option is ignored", errors)
        self.assertNotIn("x86_64-unknown-linux-gnu", output)

    def test_override_file_errors_exit_nonzero(self) -> None:
        missing = self.workspace / "missing.toml"
        code, _, errors = self._main(
            ["build", "--dry-run", "--target-dir", str(self.target_dir), "-c", str(missing)]
        )
        self.assertEqual(code, 1)
        self.assertIn("failed to read config file", errors)
        self.assertIn(str(missing), errors)

    def test_arch_and_platform_conflict(self) -> None:
        with self.assertRaises(SystemExit):
            self._main(["build", "-A", "aarch64", "-P", "aarch64-raspi4"])


class RunCommandDryRunTests(CliTestCase):
    def test_run_registers_runner(self) -> None:
        code, output, _ = self._main(
            [
                "r", "--dry-run", "--target-dir", str(self.target_dir),
                "-A", "x86_64", "-m", "512M", "--net", "--graphics",
            ]
        )
        self.assertEqual(code, 0)
        self.assertIn(
            "[dry-run] CARGO_TARGET_X86_64_UNKNOWN_NONE_RUNNER=cargo-axbuild runner --mem 512M --net=user --graphics",
            output,
        )
        self.assertIn("[dry-run] cargo run", output)

    def test_debug_and_accel_are_rejected(self) -> None:
        with self.assertRaises(SystemExit):
            self._main(["run", "--target-dir", str(self.target_dir), "--debug", "--accel"])

    def test_net_dump_requires_net(self) -> None:
        code, _, errors = self._main(
            ["run", "--dry-run", "--target-dir", str(self.target_dir), "--net-dump", "dump.pcap"]
        )
        self.assertEqual(code, 1)
        self.assertIn("--net-dump", errors)


class RunnerCommandTests(CliTestCase):
    def test_runner_dry_run(self) -> None:
        binary = self.workspace / "app"
        code, output, errors = self._main(
            ["runner", "--dry-run", "--net=user", str(binary)],
            env={"AX_PLATFORM": "riscv64-qemu-virt", "AX_SMP": "2"},
        )
        self.assertEqual(code, 0)
        lines = [line for line in output.splitlines() if line.startswith("[dry-run]")]
        self.assertEqual(len(lines), 2)
        self.assertIn("rust-objcopy --strip-all -O binary", lines[0])
        self.assertIn("qemu-system-riscv64", lines[1])
        self.assertIn("-smp 2", lines[1])
        self.assertIn("virtio-net-pci,netdev=net0", lines[1])
        self.assertIn("Running", errors)

    def test_bare_net_does_not_take_the_binary(self) -> None:
        binary = self.workspace / "kernel" / "arceos-helloworld"
        code, output, _ = self._main(
            ["runner", "--dry-run", "--net", str(binary)],
            env={"AX_PLATFORM": "x86_64-qemu-q35", "AX_SMP": "1"},
        )
        self.assertEqual(code, 0)
        self.assertIn(f"-kernel {binary}", output)
        self.assertIn("user,id=net0", output)

    def test_registered_runner_accepts_the_kernel_path(self) -> None:
        env = {"AX_PLATFORM": "x86_64-qemu-q35", "AX_SMP": "2"}
        binary = self.workspace / "kernel" / "arceos-helloworld"
        cases = [
            VMOptions(net=True),
            VMOptions(net=True, net_type=NetDevType.USER, graphics=True),
            VMOptions(mem="128M", bus=BusType.MMIO, net=True, net_dump=Path("net.pcap")),
        ]
        for options in cases:
            with self.subTest(options=options):
                program, subcommand, *flags = runner_command(options).split()
                self.assertEqual((program, subcommand), ("cargo-axbuild", "runner"))
                code, output, _ = self._main([subcommand, "--dry-run", *flags, str(binary)], env=env)
                self.assertEqual(code, 0)
                self.assertIn(f"-kernel {binary}", output)
                self.assertIn("-netdev user,id=net0", output)

    def test_runner_registered_by_run_round_trips(self) -> None:
        code, output, _ = self._main(["run", "--dry-run", "--target-dir", str(self.target_dir), "-A", "x86_64", "--net"])
        self.assertEqual(code, 0)
        prefix = "[dry-run] CARGO_TARGET_X86_64_UNKNOWN_NONE_RUNNER="
        registered = next(line[len(prefix):] for line in output.splitlines() if line.startswith(prefix))
        self.assertEqual(registered, "cargo-axbuild runner --net=user")

        binary = self.target_dir / "x86_64-unknown-none" / "debug" / "arceos-helloworld"
        _, subcommand, *flags = registered.split()
        code, output, _ = self._main(
            [subcommand, "--dry-run", *flags, str(binary)],
            env={"AX_PLATFORM": "x86_64-qemu-q35", "AX_SMP": "1"},
        )
        self.assertEqual(code, 0)
        self.assertIn(f"-kernel {binary}", output)

    def test_runner_without_build_environment(self) -> None:
        code, _, errors = self._main(["runner", "--dry-run", "app"], env={})
        self.assertEqual(code, 101)
        self.assertIn("AX_PLATFORM", errors)

    def test_runner_unsupported_platform(self) -> None:
        code, _, errors = self._main(
            ["runner", "--dry-run", "app"],
            env={"AX_PLATFORM": "x86_64-pc-oslab", "AX_SMP": "1"},
        )
        self.assertEqual(code, 1)
        self.assertIn("unsupported platform: x86_64-pc-oslab", errors)

    def test_runner_rejects_unknown_arguments(self) -> None:
        with self.assertRaises(SystemExit):
            self._main(["runner", "--release", "app"], env={"AX_PLATFORM": "x86_64-qemu-q35", "AX_SMP": "1"})


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
