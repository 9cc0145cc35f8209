"""Tests for remote path helpers and the SFTP transport."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from file_distributor.models import Target
from file_distributor.transport import (
    SftpTransport,
    build_remote_path,
    ensure_remote_directory,
    remote_parent,
)


class TestBuildRemotePath:
    """Tests for joining base and relative paths."""

    @pytest.mark.parametrize(
        "base,relative,expected",
        [
            ("/srv/dod/", "/maps/x.bsp", "/srv/dod/maps/x.bsp"),
            ("/srv/dod", "maps/x.bsp", "/srv/dod/maps/x.bsp"),
            ("/srv/dod//", "//maps/x.bsp", "/srv/dod/maps/x.bsp"),
            ("/", "x.cfg", "/x.cfg"),
            ("/srv/dod", "addons\\amxmodx\\plugins\\a.amxx", "/srv/dod/addons/amxmodx/plugins/a.amxx"),
        ],
    )
    def test_join(self, base: str, relative: str, expected: str) -> None:
        """Exactly one forward slash separates base and relative parts."""
        assert build_remote_path(base, relative) == expected

    def test_remote_parent(self) -> None:
        """Parent of a top-level file is the root."""
        assert remote_parent("/srv/dod/maps/x.bsp") == "/srv/dod/maps"
        assert remote_parent("/x.cfg") == "/"


class TestEnsureRemoteDirectory:
    """Tests for creating remote directory trees."""

    def test_creates_missing_segments(self) -> None:
        """Each missing segment is created from the root down."""
        transport = MagicMock()
        transport.exists.side_effect = lambda p: p == "/srv"

        ensure_remote_directory(transport, "/srv/dod/maps")

        assert [c.args[0] for c in transport.create_directory.call_args_list] == [
            "/srv/dod",
            "/srv/dod/maps",
        ]

    def test_tolerates_create_races(self) -> None:
        """A failing create on one segment does not stop the rest."""
        transport = MagicMock()
        transport.exists.return_value = False
        transport.create_directory.side_effect = [OSError("exists"), None]

        ensure_remote_directory(transport, "/a/b")

        assert transport.create_directory.call_count == 2

    def test_root_is_noop(self) -> None:
        """The root directory needs nothing created."""
        transport = MagicMock()
        ensure_remote_directory(transport, "/")
        transport.create_directory.assert_not_called()


@pytest.fixture
def ssh_client():
    with patch("file_distributor.transport.paramiko.SSHClient") as cls:
        client = cls.return_value
        client.get_transport.return_value.is_active.return_value = True
        yield client


class TestSftpTransport:
    """Tests for the paramiko-backed transport."""

    def test_password_auth(self, ssh_client) -> None:
        """Password targets connect with the password and timeouts."""
        target = Target("a", "h", port=2222, username="dod", password="pw")
        transport = SftpTransport(target, timeout=7)

        transport.connect()

        kwargs = ssh_client.connect.call_args.kwargs
        assert ssh_client.connect.call_args.args == ("h",)
        assert kwargs["port"] == 2222
        assert kwargs["username"] == "dod"
        assert kwargs["password"] == "pw"
        assert kwargs["timeout"] == 7
        assert "key_filename" not in kwargs
        assert transport.is_connected is True

    def test_key_auth_with_passphrase(self, ssh_client) -> None:
        """Key targets connect with the key file and its passphrase."""
        target = Target("a", "h", private_key_path="/k/id_rsa", private_key_passphrase="pp")
        SftpTransport(target).connect()

        kwargs = ssh_client.connect.call_args.kwargs
        assert kwargs["key_filename"] == "/k/id_rsa"
        assert kwargs["passphrase"] == "pp"
        assert "password" not in kwargs

    def test_no_credentials_falls_back_to_empty_password(self, ssh_client, caplog) -> None:
        """A target without credentials tries an empty password and warns."""
        with caplog.at_level("WARNING"):
            transport = SftpTransport(Target("bare", "h"))
        transport.connect()

        assert ssh_client.connect.call_args.kwargs["password"] == ""
        assert "neither a password nor a private key" in caplog.text

    def test_failed_connect_closes_client(self, ssh_client) -> None:
        """A failed connect releases the SSH client and stays disconnected."""
        ssh_client.connect.side_effect = OSError("refused")
        transport = SftpTransport(Target("a", "h", password="pw"))

        with pytest.raises(OSError):
            transport.connect()

        ssh_client.close.assert_called_once()
        assert transport.is_connected is False

    def test_disconnect_is_idempotent(self, ssh_client) -> None:
        """Disconnecting twice is harmless."""
        transport = SftpTransport(Target("a", "h", password="pw"))
        transport.connect()

        transport.disconnect()
        transport.disconnect()

        assert transport.is_connected is False
        ssh_client.close.assert_called_once()

    def test_exists(self, ssh_client) -> None:
        """exists maps a missing-file error to False."""
        sftp = ssh_client.open_sftp.return_value
        sftp.stat.side_effect = [MagicMock(), FileNotFoundError()]
        transport = SftpTransport(Target("a", "h", password="pw"))
        transport.connect()

        assert transport.exists("/there") is True
        assert transport.exists("/missing") is False

    def test_upload_overwrites(self, ssh_client) -> None:
        """Uploads put the local file at the remote path."""
        sftp = ssh_client.open_sftp.return_value
        transport = SftpTransport(Target("a", "h", password="pw"))
        transport.connect()

        transport.upload_file("/local/x.bsp", "/srv/x.bsp")

        sftp.put.assert_called_once_with("/local/x.bsp", "/srv/x.bsp")
        sftp.stat.assert_not_called()

    def test_upload_without_overwrite_refuses_existing(self, ssh_client) -> None:
        """overwrite=False raises if the remote file exists."""
        sftp = ssh_client.open_sftp.return_value
        transport = SftpTransport(Target("a", "h", password="pw"))
        transport.connect()

        with pytest.raises(FileExistsError):
            transport.upload_file("/local/x", "/srv/x", overwrite=False)
        sftp.put.assert_not_called()

    def test_operations_require_connection(self) -> None:
        """Calling file operations before connect raises ConnectionError."""
        transport = SftpTransport(Target("a", "h", password="pw"))
        with pytest.raises(ConnectionError):
            transport.delete_file("/x")
