import logging
import os

import pytest

from keystrap.errors import RemoteCommandError
from keystrap.models import CommandResult, Target
from keystrap.remote.mutator import RemoteAuthMutator
from keystrap.remote.session import RemoteSession

KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFAKE keystrap@10.0.0.5"


@pytest.fixture
def mutator(shell_host, settings):
    session = RemoteSession(shell_host, target=Target("10.0.0.5"), password="x")
    return RemoteAuthMutator(session, settings)


class ScriptedSession:
    """Answers by the first matching substring; everything else exits 0."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []
        self.target = Target("10.0.0.5")

    def exec(self, command, *, sudo=False):
        self.calls.append((command, sudo))
        for needle, result in self.responses.items():
            if needle in command:
                return result
        return CommandResult(0)


# ----------------- ~/.ssh and authorized_keys -----------------

def test_remote_ssh_dir_and_authorized_keys_are_created(mutator, shell_host):
    mutator.ensure_remote_ssh_dir()
    mutator.ensure_authorized_keys_file()

    ssh_dir = shell_host.home / ".ssh"
    assert os.stat(ssh_dir).st_mode & 0o777 == 0o700
    assert shell_host.authorized_keys.read_text() == ""
    assert os.stat(shell_host.authorized_keys).st_mode & 0o777 == 0o600


def test_existing_authorized_keys_is_kept(mutator, shell_host):
    (shell_host.home / ".ssh").mkdir()
    shell_host.authorized_keys.write_text("ssh-rsa AAAAOLD old@box\n")
    shell_host.authorized_keys.chmod(0o644)

    mutator.ensure_remote_ssh_dir()
    mutator.ensure_authorized_keys_file()

    assert shell_host.authorized_keys.read_text() == "ssh-rsa AAAAOLD old@box\n"
    assert os.stat(shell_host.authorized_keys).st_mode & 0o777 == 0o600


def test_install_key_twice_leaves_one_line(mutator, shell_host):
    mutator.ensure_remote_ssh_dir()
    mutator.ensure_authorized_keys_file()

    assert mutator.install_public_key(KEY) is True
    after_first = shell_host.authorized_keys.read_bytes()
    assert mutator.install_public_key(KEY) is False

    assert shell_host.authorized_keys.read_bytes() == after_first
    assert shell_host.authorized_keys.read_text().splitlines() == [KEY]


def test_install_key_keeps_other_keys_and_fixes_missing_newline(mutator, shell_host):
    mutator.ensure_remote_ssh_dir()
    shell_host.authorized_keys.write_text("ssh-rsa AAAAOLD old@box")

    assert mutator.install_public_key(KEY) is True

    assert shell_host.authorized_keys.read_text() == f"ssh-rsa AAAAOLD old@box\n{KEY}\n"


def test_install_key_matches_whole_lines_only(mutator, shell_host):
    mutator.ensure_remote_ssh_dir()
    shell_host.authorized_keys.write_text(f'from="10.0.0.1" {KEY}\n')

    assert mutator.install_public_key(KEY) is True
    assert shell_host.authorized_keys.read_text().splitlines()[-1] == KEY


def test_install_key_survives_shell_metacharacters(mutator, shell_host):
    mutator.ensure_remote_ssh_dir()
    odd = "ssh-ed25519 AAAAODD it's $HOME `id` \"q\""

    assert mutator.install_public_key(odd) is True
    assert mutator.install_public_key(odd) is False
    assert shell_host.authorized_keys.read_text() == odd + "\n"


def test_install_key_rejects_multiline_material(mutator):
    with pytest.raises(ValueError):
        mutator.install_public_key(KEY + "\nssh-rsa AAAAEVIL")
    with pytest.raises(ValueError):
        mutator.install_public_key("   ")


def test_install_key_unexpected_output_raises():
    session = ScriptedSession({"base64 -d": CommandResult(0, stdout="weird\n")})
    with pytest.raises(RemoteCommandError, match="unexpected output"):
        RemoteAuthMutator(session).install_public_key(KEY)


# ----------------- sshd_config directives -----------------

@pytest.mark.parametrize(
    "before",
    [
        "#PubkeyAuthentication yes\n",
        "  # PubkeyAuthentication no\n",
        "PubkeyAuthentication no\n",
        "PubkeyAuthentication\tno\n",
        "",
    ],
    ids=["commented", "commented-indented", "explicit-no", "tab", "absent"],
)
def test_set_directive_leaves_exactly_one_line(mutator, shell_host, before):
    shell_host.sshd_config.write_text(f"Port 22\n{before}UsePAM yes\n")

    mutator.enable_pubkey_auth()

    lines = shell_host.sshd_config.read_text().splitlines()
    assert lines.count("PubkeyAuthentication yes") == 1
    assert not any("PubkeyAuthentication" in ln and ln != "PubkeyAuthentication yes" for ln in lines)
    assert "Port 22" in lines and "UsePAM yes" in lines


def test_set_directive_collapses_duplicates(mutator, shell_host):
    shell_host.sshd_config.write_text(
        "PasswordAuthentication yes\n"
        "#PasswordAuthentication yes\n"
        "UsePAM yes\n"
        "PasswordAuthentication no\n"
    )

    mutator.disable_password_auth_directive()

    assert shell_host.sshd_config.read_text() == "PasswordAuthentication no\nUsePAM yes\n"


def test_set_directive_does_not_touch_similar_names(mutator, shell_host):
    shell_host.sshd_config.write_text("KbdInteractiveAuthentication yes\nPasswordAuthenticationExtra yes\n")

    mutator.disable_password_auth_directive()

    assert shell_host.sshd_config.read_text() == (
        "KbdInteractiveAuthentication yes\n"
        "PasswordAuthenticationExtra yes\n"
        "PasswordAuthentication no\n"
    )


def test_set_directive_is_idempotent(mutator, shell_host):
    mutator.enable_pubkey_auth()
    once = shell_host.sshd_config.read_bytes()
    mutator.enable_pubkey_auth()
    assert shell_host.sshd_config.read_bytes() == once


def test_set_directive_runs_under_sudo(mutator, shell_host):
    mutator.enable_pubkey_auth()
    assert shell_host.commands[-1].startswith("sudo -S -p '' sh -c ")
    assert shell_host.stdins[-1] == "x\n"


def test_set_directive_missing_file_raises(mutator, shell_host):
    shell_host.sshd_config.unlink()
    with pytest.raises(RemoteCommandError):
        mutator.enable_pubkey_auth()


def test_set_directive_rejects_unsafe_input(mutator):
    with pytest.raises(ValueError):
        mutator.set_directive("PasswordAuthentication", "no; rm -rf /")
    with pytest.raises(ValueError):
        mutator.set_directive("Pass/word", "no")


def test_backup_copies_current_config(mutator, shell_host):
    original = shell_host.sshd_config.read_text()

    backup = mutator.backup_sshd_config()

    assert backup == f"{shell_host.sshd_config}.backup"
    with open(backup) as f:
        assert f.read() == original


# ----------------- service -----------------

def test_service_resolves_to_sshd_when_unit_listed(mutator, shell_host):
    assert mutator.resolve_service_name() == "sshd"


def test_service_falls_back_to_ssh(mutator, shell_host):
    shell_host.units.write_text("ssh.service loaded active running OpenBSD Secure Shell server\n")
    assert mutator.resolve_service_name() == "ssh"


def test_restart_validates_then_restarts(mutator, shell_host):
    assert mutator.restart_sshd() == "sshd"

    calls = shell_host.calls()
    assert calls[0] == f"sshd -t -f {shell_host.sshd_config}"
    assert calls[-1] == "restart sshd"


def test_restart_uses_debian_unit_name(mutator, shell_host):
    shell_host.units.write_text("")
    assert mutator.restart_sshd() == "ssh"
    assert shell_host.calls()[-1] == "restart ssh"


def test_invalid_config_blocks_restart(mutator, shell_host):
    shell_host.sshd_rc = 255
    with pytest.raises(RemoteCommandError, match="validate sshd_config"):
        mutator.restart_sshd()
    assert not any(c.startswith("restart") for c in shell_host.calls())


def test_restart_failure_is_loud(mutator, shell_host, caplog):
    shell_host.restart_rc = 1
    with caplog.at_level(logging.ERROR, logger="keystrap"):
        with pytest.raises(RemoteCommandError, match="restart sshd failed"):
            mutator.restart_sshd()
    assert any(r.levelno == logging.ERROR and "RESTART OF sshd FAILED" in r.getMessage() for r in caplog.records)


def test_validation_can_be_skipped(shell_host, settings):
    session = ScriptedSession({"list-units": CommandResult(1)})
    m = RemoteAuthMutator(session, settings.model_copy(update={"validate_sshd_config": False}))

    assert m.restart_sshd() == "ssh"
    assert [c for c, _ in session.calls if "sshd -t" in c] == []
    assert session.calls[-1] == ("systemctl restart ssh", True)


def test_disable_password_auth_order(settings):
    session = ScriptedSession({"keystrap.tmp": CommandResult(0, stdout="1\n")})
    RemoteAuthMutator(session, settings).disable_password_auth()

    cmds = [c for c, _ in session.calls]
    assert cmds[0].startswith("cp -p ")
    assert "PasswordAuthentication" in cmds[1]
    assert cmds[-1] == "systemctl restart sshd"


@pytest.mark.parametrize(
    "line",
    ["#PasswordAuthentication yes", "PasswordAuthentication yes", None],
    ids=["commented", "enabled", "absent"],
)
def test_disable_password_auth_is_total(mutator, shell_host, line):
    body = "Port 22\n" + (f"{line}\n" if line else "") + "UsePAM yes\n"
    shell_host.sshd_config.write_text(body)

    mutator.disable_password_auth()

    lines = shell_host.sshd_config.read_text().splitlines()
    assert [ln for ln in lines if "PasswordAuthentication" in ln] == ["PasswordAuthentication no"]
    assert (shell_host.sshd_config.parent / "sshd_config.backup").read_text() == body
    assert shell_host.calls()[-1] == "restart sshd"


def test_backup_is_overwritten_each_run(mutator, shell_host):
    mutator.backup_sshd_config()
    shell_host.sshd_config.write_text("PasswordAuthentication no\n")

    mutator.backup_sshd_config()

    assert (shell_host.sshd_config.parent / "sshd_config.backup").read_text() == "PasswordAuthentication no\n"


def test_duplicate_key_lines_from_concurrent_runs_are_left_alone(mutator, shell_host):
    # check-then-append without locking: two runs racing can both append
    mutator.ensure_remote_ssh_dir()
    shell_host.authorized_keys.write_text(f"{KEY}\n{KEY}\n")
    before = shell_host.authorized_keys.read_bytes()

    assert mutator.install_public_key(KEY) is False
    assert shell_host.authorized_keys.read_bytes() == before


def test_missing_directive_goes_before_match_block(mutator, shell_host):
    shell_host.sshd_config.write_text("UsePAM yes\nMatch User deploy\n    X11Forwarding no\n")

    mutator.disable_password_auth_directive()

    assert shell_host.sshd_config.read_text() == (
        "UsePAM yes\n"
        "PasswordAuthentication no\n"
        "Match User deploy\n"
        "    X11Forwarding no\n"
    )


def test_directive_inside_match_block_is_also_set(mutator, shell_host):
    shell_host.sshd_config.write_text(
        "#PasswordAuthentication yes\n"
        "Match Address 10.0.0.0/8\n"
        "    PasswordAuthentication yes\n"
        "    # PasswordAuthentication yes\n"
    )

    mutator.disable_password_auth_directive()

    assert shell_host.sshd_config.read_text() == (
        "PasswordAuthentication no\n"
        "Match Address 10.0.0.0/8\n"
        "    PasswordAuthentication no\n"
        "    # PasswordAuthentication yes\n"
    )


def test_only_a_match_scoped_line_still_gets_a_global_one(mutator, shell_host):
    shell_host.sshd_config.write_text("match all\n    PasswordAuthentication no\n")

    mutator.disable_password_auth_directive()

    assert shell_host.sshd_config.read_text().splitlines()[0] == "PasswordAuthentication no"


@pytest.mark.parametrize(
    "before",
    ["passwordauthentication yes", "PASSWORDAUTHENTICATION yes", "#passwordAuthentication yes"],
)
def test_directive_keyword_case_is_ignored(mutator, shell_host, before):
    shell_host.sshd_config.write_text(f"{before}\nUsePAM yes\n")

    mutator.disable_password_auth_directive()

    assert shell_host.sshd_config.read_text() == "PasswordAuthentication no\nUsePAM yes\n"


def test_mixed_case_duplicates_collapse_to_the_first_position(mutator, shell_host):
    shell_host.sshd_config.write_text(
        "Port 22\n"
        "pubkeyauthentication no\n"
        "UsePAM yes\n"
        "PubkeyAuthentication yes\n"
    )

    mutator.enable_pubkey_auth()

    assert shell_host.sshd_config.read_text() == "Port 22\nPubkeyAuthentication yes\nUsePAM yes\n"


def test_install_key_verifies_and_logs_line_count(mutator, shell_host, caplog):
    mutator.ensure_remote_ssh_dir()
    shell_host.authorized_keys.write_text("ssh-rsa AAAAOLD old@box\n")

    with caplog.at_level(logging.INFO, logger="keystrap"):
        assert mutator.install_public_key(KEY) is True

    assert "Authorized keys line count: 2" in caplog.text
    assert any("wc -l" in c for c in shell_host.commands)


def test_install_key_fails_when_key_is_not_there_afterwards():
    session = ScriptedSession({
        "echo added": CommandResult(0, stdout="added\n"),
        "wc -l": CommandResult(0, stdout="0 3\n"),
    })

    with pytest.raises(RemoteCommandError, match="not found in authorized_keys"):
        RemoteAuthMutator(session).install_public_key(KEY)


def test_install_key_skips_verification_when_already_present():
    session = ScriptedSession({"echo added": CommandResult(0, stdout="present\n")})

    assert RemoteAuthMutator(session).install_public_key(KEY) is False
    assert not any("wc -l" in c for c, _ in session.calls)
