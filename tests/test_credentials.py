"""Tests for staged MySQL option files"""

import os
import stat

import pytest

from dbvault.core.credentials import CredentialStaging, render_option_file
from dbvault.core.models import DatabaseConnectionProfile
from dbvault.utils.platform_paths import PlatformPaths, PosixPlatform


@pytest.fixture
def profile():
    return DatabaseConnectionProfile(host="db.internal", database="shop", username="app", password='p#ss"w;rd', port=3307)


def test_dump_section_and_quoting(profile):
    content = render_option_file(profile, for_dump=True)

    assert content.splitlines() == [
        "[mysqldump]",
        "user=app",
        'password="p#ss\\"w;rd"',
        "host=db.internal",
        "port=3307",
    ]


def test_client_section_without_port():
    profile = DatabaseConnectionProfile(host="127.0.0.1", database="shop", username="root", password="")

    content = render_option_file(profile, for_dump=False)

    assert content.startswith("[mysql]\n")
    assert "port=" not in content


def test_profile_repr_hides_password(profile):
    assert "p#ss" not in repr(profile)


class TestCredentialStaging:
    def test_stage_writes_file_in_temp_dir(self, tmp_path, profile):
        staging = CredentialStaging(tmp_path, PosixPlatform())

        staged = staging.stage(profile, for_dump=True)

        assert staged.path.parent == tmp_path
        assert staged.path.name.startswith("mysql_conf_")
        assert staged.path.suffix == ".cnf"
        assert staged.path.read_text().startswith("[mysqldump]")

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_owner_only_permissions(self, tmp_path, profile):
        staged = CredentialStaging(tmp_path, PosixPlatform()).stage(profile, for_dump=False)

        assert stat.S_IMODE(staged.path.stat().st_mode) == 0o600

    def test_unsupported_permissions_warns(self, tmp_path, profile):
        staging = CredentialStaging(tmp_path, PlatformPaths())
        seen = []
        staging.reporter.sink = seen.append

        staged = staging.stage(profile, for_dump=True)

        assert staged.path.exists()
        assert any("owner-only" in e.message for e in seen)

    def test_release_is_idempotent(self, tmp_path, profile):
        staged = CredentialStaging(tmp_path, PosixPlatform()).stage(profile, for_dump=True)

        staged.release()
        staged.release()

        assert staged.released
        assert not staged.path.exists()

    def test_context_manager_releases(self, tmp_path, profile):
        with CredentialStaging(tmp_path, PosixPlatform()).stage(profile, for_dump=True) as staged:
            assert staged.path.exists()

        assert not staged.path.exists()
