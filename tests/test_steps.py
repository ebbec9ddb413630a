"""
Tests for the concrete provisioning steps, with external commands stubbed.
"""

from __future__ import annotations

import dataclasses

import pytest

import demo_provisioner.context as context
import demo_provisioner.lib.git as git
import demo_provisioner.lib.pip as pip
import demo_provisioner.lib.pkg as pkg
import demo_provisioner.lib.runtime as runtime
import demo_provisioner.steps.step_10_host_checks as host_checks
import demo_provisioner.steps.step_20_system_packages as system_packages
import demo_provisioner.steps.step_25_cuda_toolkit as cuda_toolkit
import demo_provisioner.steps.step_30_runtime_manager as runtime_manager
import demo_provisioner.steps.step_40_environment as environment
import demo_provisioner.steps.step_80_verify as verify
from demo_provisioner.config import CudaSpec, DependencyGroup, SourceSpec, VerifySpec
from demo_provisioner.context import RunContext
from demo_provisioner.errors import PreconditionCheckError, ProvisionError
from demo_provisioner.guard import check_presence
from demo_provisioner.lib.command import CmdResult
from demo_provisioner.lib.runtime import conda_env_exists
from demo_provisioner.models import Presence, StepStatus
from demo_provisioner.pipeline import StepRegistry
from demo_provisioner.steps import (
    CudaToolkitStep,
    DependencyGroupStep,
    EnvironmentStep,
    HostChecksStep,
    RuntimeManagerStep,
    ShellInitStep,
    SourceTreeStep,
    SystemPackagesStep,
    VerifyStep,
)


def ok(argv, stdout=""):
    return CmdResult(argv=[str(a) for a in argv], returncode=0, stdout=stdout, stderr="")


@pytest.fixture
def venv_ctx(make_config, tmp_path):
    cfg = make_config(
        runtime={"manager": "venv"},
        environment={"path": str(tmp_path / "venv"), "python": "3.10"},
    )
    python = tmp_path / "venv" / "bin" / "python"
    python.parent.mkdir(parents=True)
    python.write_text("")
    (tmp_path / "app").mkdir()
    return RunContext.from_config(cfg)


class TestDependencyGroupStep:
    def test_install_order_and_exclude(self, venv_ctx, monkeypatch):
        calls = []
        monkeypatch.setattr(pip, "run_cmd", lambda argv, **kw: calls.append(list(argv)) or ok(argv))
        (venv_ctx.app_dir / "requirements.txt").write_text("torch==2.6.0\ngradio>=5\n# comment\nxformers\n")

        group = DependencyGroup(
            name="core",
            packages=("opencv-python-headless",),
            requirements=("requirements.txt",),
            exclude=("torch", "xformers"),
            uninstall=("opencv-python",),
        )
        DependencyGroupStep(group).run(venv_ctx)

        python = str(venv_ctx.environment.python)
        filtered = venv_ctx.config.work_dir / "requirements.core.filtered.txt"
        assert calls == [
            [python, "-m", "pip", "uninstall", "-y", "opencv-python"],
            [python, "-m", "pip", "install", "-r", str(filtered)],
            [python, "-m", "pip", "install", "opencv-python-headless"],
        ]
        assert filtered.read_text() == "gradio>=5\n# comment\n"
        assert sorted(p.name for p in venv_ctx.app_dir.iterdir()) == ["requirements.txt"]

    def test_index_url_and_extra_args(self, venv_ctx, monkeypatch):
        calls = []
        monkeypatch.setattr(pip, "run_cmd", lambda argv, **kw: calls.append(list(argv)) or ok(argv))
        group = DependencyGroup(
            name="torch",
            packages=("torch",),
            index_url="https://download.pytorch.org/whl/cu126",
            extra_args=("--no-cache-dir",),
        )
        DependencyGroupStep(group).run(venv_ctx)

        assert calls[0][4:] == ["--index-url", "https://download.pytorch.org/whl/cu126", "--no-cache-dir", "torch"]

    def test_missing_requirements_file_fails(self, venv_ctx, monkeypatch):
        monkeypatch.setattr(pip, "run_cmd", lambda argv, **kw: ok(argv))
        step = DependencyGroupStep(DependencyGroup(name="r", requirements=("missing.txt",)))
        with pytest.raises(ProvisionError, match="not found"):
            step.run(venv_ctx)

    def test_fingerprint_tracks_requirements_contents(self, venv_ctx):
        req = venv_ctx.app_dir / "requirements.txt"
        req.write_text("gradio\n")
        step = DependencyGroupStep(DependencyGroup(name="r", requirements=("requirements.txt",)))
        before = step.fingerprint(venv_ctx)
        req.write_text("gradio\nnumpy\n")

        assert step.fingerprint(venv_ctx) != before

    def test_fingerprint_of_non_utf8_requirements(self, venv_ctx):
        (venv_ctx.app_dir / "requirements.txt").write_bytes(b"torch\n# caf\xe9\n")
        step = DependencyGroupStep(DependencyGroup(name="extras", requirements=("requirements.txt",), optional=True))

        assert len(step.fingerprint(venv_ctx)) == 64

    def test_optional_group(self):
        step = DependencyGroupStep(DependencyGroup(name="flash-attn", packages=("flash-attn",), optional=True))
        assert step.name == "deps:flash-attn"
        assert step.mandatory is False


class TestEnvironmentStep:
    def test_absent(self, make_config, tmp_path):
        ctx = RunContext.from_config(
            make_config(runtime={"manager": "venv"}, environment={"path": str(tmp_path / "nowhere")})
        )
        assert EnvironmentStep().precondition(ctx) == Presence.ABSENT

    def test_matching_version_is_present(self, venv_ctx, monkeypatch):
        monkeypatch.setattr(environment, "env_python_version", lambda python: "3.10")
        assert EnvironmentStep().precondition(venv_ctx) == Presence.PRESENT

    def test_wrong_version_is_partial(self, venv_ctx, monkeypatch):
        monkeypatch.setattr(environment, "env_python_version", lambda python: "3.8")
        assert EnvironmentStep().precondition(venv_ctx) == Presence.PARTIAL

    def test_default_policy_is_recreate(self):
        assert EnvironmentStep().on_exists.value == "recreate"

    def test_teardown_removes_venv(self, venv_ctx):
        EnvironmentStep().teardown(venv_ctx)
        assert not venv_ctx.environment.path.exists()


class TestSourceTreeStep:
    def spec(self, tmp_path, **kw):
        return SourceSpec(repo="https://github.com/example/app.git", path=tmp_path / "src", **kw)

    def test_missing_or_empty_is_absent(self, ctx, tmp_path):
        step = SourceTreeStep(self.spec(tmp_path))
        assert step.precondition(ctx) == Presence.ABSENT
        (tmp_path / "src").mkdir()
        assert step.precondition(ctx) == Presence.ABSENT

    def test_non_checkout_is_partial(self, ctx, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "stray.txt").write_text("x")
        assert SourceTreeStep(self.spec(tmp_path)).precondition(ctx) == Presence.PARTIAL

    def test_same_remote_is_present(self, ctx, tmp_path, monkeypatch):
        (tmp_path / "src" / ".git").mkdir(parents=True)
        monkeypatch.setattr(git, "run_cmd", lambda argv, **kw: ok(argv, "https://github.com/example/app\n"))
        assert SourceTreeStep(self.spec(tmp_path)).precondition(ctx) == Presence.PRESENT

    def test_other_remote_is_partial(self, ctx, tmp_path, monkeypatch):
        (tmp_path / "src" / ".git").mkdir(parents=True)
        monkeypatch.setattr(git, "run_cmd", lambda argv, **kw: ok(argv, "https://github.com/fork/app.git\n"))
        assert SourceTreeStep(self.spec(tmp_path)).precondition(ctx) == Presence.PARTIAL

    def test_clone_argv(self, ctx, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setattr(git, "run_cmd", lambda argv, **kw: calls.append(list(argv)) or ok(argv))
        SourceTreeStep(self.spec(tmp_path, ref="v1.2", submodules=True, lfs=True)).run(ctx)

        assert calls == [
            ["git", "clone", "--branch", "v1.2", "--recurse-submodules",
             "https://github.com/example/app.git", str(tmp_path / "src")],
            ["git", "lfs", "install"],
            ["git", "lfs", "pull"],
        ]


class TestSystemPackagesStep:
    def test_without_apt_precondition_is_undeterminable(self, ctx, monkeypatch):
        monkeypatch.setattr(system_packages, "apt_available", lambda: False)
        step = SystemPackagesStep(["git"])

        with pytest.raises(PreconditionCheckError):
            step.precondition(ctx)
        assert check_presence(step, ctx) == Presence.ABSENT

    def test_installs_only_missing(self, ctx, monkeypatch):
        installed = []
        monkeypatch.setattr(system_packages, "apt_available", lambda: True)
        monkeypatch.setattr(system_packages, "missing_packages", lambda pkgs: [p for p in pkgs if p != "git"])
        monkeypatch.setattr(system_packages, "apt_update", lambda **kw: None)
        monkeypatch.setattr(system_packages, "apt_install", lambda pkgs, **kw: installed.extend(pkgs))

        SystemPackagesStep(["git", "ffmpeg"]).run(ctx)
        assert installed == ["ffmpeg"]


class TestHostChecksStep:
    HOST = {
        "os_id": "ubuntu",
        "os_version": "22.04",
        "root": False,
        "nvidia_smi": True,
        "nvcc_version": "12.4",
        "gpu_memory_mb": [8192],
    }

    def test_soft_expectations_only_warn(self, ctx, monkeypatch, caplog):
        monkeypatch.setattr(host_checks, "probe_host", lambda: dict(self.HOST))
        step = HostChecksStep({"cuda_version": "12.1", "min_gpu_memory_mb": 16000, "require_gpu": True})

        message = step.run(ctx)

        assert "cuda=12.4" in message
        assert "CUDA version is 12.4" in caplog.text
        assert "16000MB recommended" in caplog.text

    def test_missing_gpu_fails(self, ctx, monkeypatch):
        monkeypatch.setattr(host_checks, "probe_host", lambda: dict(self.HOST, nvidia_smi=False))
        with pytest.raises(ProvisionError, match="nvidia-smi"):
            HostChecksStep({"require_gpu": True}).run(ctx)

    def test_missing_command_fails(self, ctx, monkeypatch):
        monkeypatch.setattr(host_checks, "probe_host", lambda: dict(self.HOST))
        monkeypatch.setattr(host_checks, "which", lambda name: None)
        with pytest.raises(ProvisionError, match="missing commands: ffmpeg"):
            HostChecksStep({"commands": ["ffmpeg"]}).run(ctx)


class TestVerifyStep:
    def test_reports_failed_imports_and_missing_files(self, venv_ctx, monkeypatch):
        def fake(argv, **kw):
            if argv[-1] == "import torch":
                return ok(argv)
            return CmdResult(argv=list(argv), returncode=1, stdout="", stderr="ModuleNotFoundError: gradio\n")

        monkeypatch.setattr(verify, "run_cmd", fake)
        step = VerifyStep(VerifySpec(imports=("torch", "gradio"), files=("checkpoints/unet.pth",)))

        with pytest.raises(ProvisionError) as exc:
            step.run(venv_ctx)
        assert "import gradio: ModuleNotFoundError: gradio" in str(exc.value)
        assert "checkpoints/unet.pth" in str(exc.value)
        assert "import torch" not in str(exc.value)


@pytest.fixture
def conda_ctx(make_config, tmp_path, monkeypatch):
    monkeypatch.setattr(context, "which", lambda name: None)
    cfg = make_config(
        runtime={"manager": "conda", "prefix": str(tmp_path / "mc"), "rc_file": str(tmp_path / ".bashrc")},
        environment={"name": "sonic", "python": "3.10"},
    )
    return RunContext.from_config(cfg)


def install_conda(ctx):
    exe = ctx.conda_exe
    exe.parent.mkdir(parents=True, exist_ok=True)
    exe.write_text("")
    return exe


ENV_LIST = """# conda environments:
#
base                  *  /home/demo/miniconda3
sonic                    /home/demo/miniconda3/envs/sonic
"""


class TestRuntimeManagerStep:
    def test_conda_presence(self, conda_ctx):
        step = RuntimeManagerStep()
        assert step.precondition(conda_ctx) == Presence.ABSENT

        conda_ctx.runtime.prefix.mkdir()
        assert step.precondition(conda_ctx) == Presence.PARTIAL

        install_conda(conda_ctx)
        assert step.precondition(conda_ctx) == Presence.PRESENT

    def test_broken_prefix_is_kept_under_reuse(self, conda_ctx, yes_gate):
        prefix = conda_ctx.runtime.prefix
        prefix.mkdir()
        (prefix / "leftover").write_text("x")

        report = StepRegistry([RuntimeManagerStep()], ctx=conda_ctx, gate=yes_gate).run_all()

        assert report.statuses() == [("runtime-manager", StepStatus.FAILED)]
        assert report.exit_code == 1
        assert str(prefix) in report.results[0].message
        assert (prefix / "leftover").exists()

    def test_broken_prefix_is_replaced_under_recreate(self, conda_ctx, yes_gate, monkeypatch):
        prefix = conda_ctx.runtime.prefix
        prefix.mkdir()
        (prefix / "leftover").write_text("x")
        monkeypatch.setattr(runtime_manager, "install_miniconda", lambda **kw: install_conda(conda_ctx))

        report = StepRegistry([RuntimeManagerStep("recreate")], ctx=conda_ctx, gate=yes_gate).run_all()

        assert report.statuses() == [("runtime-manager", StepStatus.SUCCEEDED)]
        assert report.results[0].recreated is True
        assert not (prefix / "leftover").exists()

    def test_miniconda_batch_install(self, conda_ctx, monkeypatch):
        calls = []

        def fake(argv, **kw):
            argv = [str(a) for a in argv]
            calls.append(argv)
            if argv[0] == "bash":
                install_conda(conda_ctx)
            return ok(argv)

        monkeypatch.setattr(runtime, "run_cmd", fake)
        RuntimeManagerStep().run(conda_ctx)

        installer = conda_ctx.config.work_dir / "miniconda.sh"
        assert calls == [
            ["wget", "-q", conda_ctx.runtime.installer_url, "-O", str(installer)],
            ["bash", str(installer), "-b", "-p", str(conda_ctx.runtime.prefix)],
        ]

    def test_installer_without_conda_binary_fails(self, conda_ctx, monkeypatch):
        monkeypatch.setattr(runtime, "run_cmd", lambda argv, **kw: ok(argv))
        with pytest.raises(ProvisionError, match="is missing"):
            RuntimeManagerStep().run(conda_ctx)

    def test_venv_interpreter_presence(self, venv_ctx, monkeypatch):
        monkeypatch.setattr(runtime_manager, "find_python", lambda series: None)
        assert RuntimeManagerStep().precondition(venv_ctx) == Presence.ABSENT

        monkeypatch.setattr(runtime_manager, "find_python", lambda series: f"/usr/bin/python{series}")
        assert RuntimeManagerStep().precondition(venv_ctx) == Presence.PRESENT

    def test_venv_installs_system_interpreter(self, venv_ctx, monkeypatch):
        installed = []
        monkeypatch.setattr(runtime_manager, "apt_update", lambda **kw: None)
        monkeypatch.setattr(runtime_manager, "apt_install", lambda pkgs, **kw: installed.extend(pkgs))

        RuntimeManagerStep().run(venv_ctx)

        assert installed == ["python3.10", "python3.10-venv", "python3-pip"]

    def test_venv_teardown_keeps_system_interpreter(self, venv_ctx):
        RuntimeManagerStep().teardown(venv_ctx)


class TestShellInitStep:
    def test_marker_detection(self, conda_ctx):
        rc = conda_ctx.runtime.rc_file
        step = ShellInitStep()
        assert step.precondition(conda_ctx) == Presence.ABSENT

        rc.write_text("alias ll='ls -l'\n")
        assert step.precondition(conda_ctx) == Presence.ABSENT

        rc.write_text("alias ll='ls -l'\n# >>> conda initialize >>>\n")
        assert step.precondition(conda_ctx) == Presence.PRESENT

    def test_fingerprint_follows_rc_file(self, conda_ctx, tmp_path):
        other = dataclasses.replace(
            conda_ctx, runtime=dataclasses.replace(conda_ctx.runtime, rc_file=tmp_path / ".zshrc")
        )
        step = ShellInitStep()

        assert step.fingerprint(conda_ctx) == step.fingerprint(conda_ctx)
        assert step.fingerprint(conda_ctx) != step.fingerprint(other)

    def test_runs_conda_init(self, conda_ctx, monkeypatch):
        calls = []
        monkeypatch.setattr(runtime, "run_cmd", lambda argv, **kw: calls.append([str(a) for a in argv]) or ok(argv))

        ShellInitStep().run(conda_ctx)

        assert calls == [[str(conda_ctx.conda_exe), "init", "bash"]]


class TestCudaToolkitStep:
    SPEC = CudaSpec(
        version="12.8",
        keyring_url="https://example.invalid/cuda-keyring_1.1-1_all.deb",
        packages=("cuda-toolkit-12-8",),
    )

    def test_installed_nvcc_is_skipped(self, ctx, yes_gate, tmp_path, monkeypatch):
        monkeypatch.setattr(CudaSpec, "home", property(lambda self: tmp_path / "cuda"))
        step = CudaToolkitStep(self.SPEC)
        assert step.precondition(ctx) == Presence.ABSENT

        nvcc = tmp_path / "cuda" / "bin" / "nvcc"
        nvcc.parent.mkdir(parents=True)
        nvcc.write_text("")

        def no_commands(argv, **kw):
            raise AssertionError(f"ran {argv}")

        monkeypatch.setattr(cuda_toolkit, "run_cmd", no_commands)
        monkeypatch.setattr(pkg, "run_cmd", no_commands)
        report = StepRegistry([step], ctx=ctx, gate=yes_gate).run_all()

        assert report.statuses() == [("cuda-toolkit", StepStatus.SKIPPED)]

    def test_keyring_then_packages(self, ctx, monkeypatch):
        calls = []

        def record(argv, **kw):
            calls.append([str(a) for a in argv])
            return ok(argv)

        monkeypatch.setattr(cuda_toolkit, "run_cmd", record)
        monkeypatch.setattr(pkg, "run_cmd", record)
        monkeypatch.setattr(pkg, "sudo_prefix", lambda: [])

        CudaToolkitStep(self.SPEC).run(ctx)

        keyring = str(ctx.config.work_dir / "cuda-keyring.deb")
        assert calls == [
            ["wget", "-q", self.SPEC.keyring_url, "-O", keyring],
            ["dpkg", "-i", keyring],
            ["apt-get", "update"],
            ["apt-get", "install", "-y", "cuda-toolkit-12-8"],
        ]


class TestCondaEnvironment:
    def test_env_list_parsing(self, conda_ctx, tmp_path, monkeypatch):
        exe = install_conda(conda_ctx)
        monkeypatch.setattr(runtime, "run_cmd", lambda argv, **kw: ok(argv, ENV_LIST))

        assert conda_env_exists(exe, "sonic", tmp_path / "nowhere")
        assert not conda_env_exists(exe, "sonic-old", tmp_path / "nowhere")

    def test_failed_env_list_means_absent(self, conda_ctx, tmp_path, monkeypatch):
        exe = install_conda(conda_ctx)
        monkeypatch.setattr(
            runtime, "run_cmd", lambda argv, **kw: CmdResult(argv=list(argv), returncode=1, stdout="", stderr="")
        )
        assert not conda_env_exists(exe, "sonic", tmp_path / "nowhere")

    def test_registered_env_with_matching_python_is_present(self, conda_ctx, monkeypatch):
        install_conda(conda_ctx)
        monkeypatch.setattr(runtime, "run_cmd", lambda argv, **kw: ok(argv, ENV_LIST))
        monkeypatch.setattr(environment, "env_python_version", lambda python: "3.10")

        assert EnvironmentStep().precondition(conda_ctx) == Presence.PRESENT

    def test_teardown_removes_env_then_directory(self, conda_ctx, monkeypatch):
        exe = install_conda(conda_ctx)
        env_dir = conda_ctx.environment.path
        (env_dir / "lib").mkdir(parents=True)
        calls = []
        monkeypatch.setattr(runtime, "run_cmd", lambda argv, **kw: calls.append([str(a) for a in argv]) or ok(argv))

        step = EnvironmentStep()
        assert "sonic" in step.describe_teardown(conda_ctx)
        step.teardown(conda_ctx)

        assert calls == [[str(exe), "env", "remove", "-n", "sonic", "-y"]]
        assert not env_dir.exists()
