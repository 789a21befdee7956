"""Unit tests for Windows path handling."""

import pytest
from hvtools.core.winpath import (
    MalformedPathError,
    extension,
    guid_key,
    host_key,
    is_cluster_storage,
    is_disk_file,
    is_guid,
    is_metadata_file,
    is_unc_path,
    is_under,
    join,
    normalize_path,
    parent_of,
    path_key,
    stem,
    strip_device_prefix,
)

GUID = "5C4B8E0A-1F2D-4C3B-9A8E-7D6F5E4C3B2A"


class TestNormalizePath:
    """Tests for normalize_path function."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("C:\\VMs\\web01\\disk.vhdx", "C:\\VMs\\web01\\disk.vhdx"),
            ('"C:\\VMs\\disk.vhdx"', "C:\\VMs\\disk.vhdx"),
            ("  'D:\\Hyper-V\\a.vhd'  ", "D:\\Hyper-V\\a.vhd"),
            ("C:/VMs/web01/disk.vhdx", "C:\\VMs\\web01\\disk.vhdx"),
            ("C:\\VMs\\\\web01\\", "C:\\VMs\\web01"),
            ("\\\\nas\\vms\\web01.vhdx", "\\\\nas\\vms\\web01.vhdx"),
        ],
    )
    def test_files(self, raw: str, expected: str) -> None:
        """normalize_path cleans quotes, separators and trailing slashes."""
        assert normalize_path(raw) == expected

    def test_long_path_prefix_is_rewritten(self) -> None:
        """The \\\\?\\ prefix becomes \\\\.\\."""
        assert normalize_path("\\\\?\\C:\\VMs\\a.vhdx") == "\\\\.\\C:\\VMs\\a.vhdx"

    def test_raw_volume_path(self) -> None:
        """Raw volume identifiers are accepted."""
        path = "\\\\?\\Volume{6a2b3c4d-0000-0000-0000-100000000000}\\VMs"
        assert normalize_path(path) == "\\\\.\\Volume{6a2b3c4d-0000-0000-0000-100000000000}\\VMs"

    def test_directory_keeps_one_separator(self) -> None:
        """Directories end with exactly one backslash."""
        assert normalize_path("C:\\VMs", directory=True) == "C:\\VMs\\"
        assert normalize_path("C:\\VMs\\\\", directory=True) == "C:\\VMs\\"

    def test_bare_drive_is_root(self) -> None:
        """A bare drive letter is the drive's root directory."""
        assert normalize_path("E:") == "E:\\"
        assert normalize_path("E:\\", directory=True) == "E:\\"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            '""',
            "VMs\\disk.vhdx",
            "\\VMs\\disk.vhdx",
            "C:\\VMs\\dis?k.vhdx",
            "C:\\VMs\\a<b",
            "C:\\VMs\\a:b",
            "\\\\nas",
            "\\\\?\\",
        ],
    )
    def test_rejects_malformed(self, raw: str) -> None:
        """normalize_path raises MalformedPathError for unusable paths."""
        with pytest.raises(MalformedPathError):
            normalize_path(raw)

    def test_error_carries_path(self) -> None:
        """MalformedPathError keeps the original input."""
        with pytest.raises(MalformedPathError) as exc_info:
            normalize_path("relative\\path")

        assert exc_info.value.path == "relative\\path"
        assert isinstance(exc_info.value, ValueError)


class TestPathKey:
    """Tests for path_key and related comparison helpers."""

    def test_case_insensitive(self) -> None:
        """Keys ignore case."""
        assert path_key("C:\\VMs\\Web01.VHDX") == path_key("c:\\vms\\web01.vhdx")

    def test_ignores_trailing_separator(self) -> None:
        """Keys ignore trailing separators except for drive roots."""
        assert path_key("C:\\VMs\\") == path_key("C:\\VMs")
        assert path_key("C:") == "c:\\"

    def test_ignores_device_prefix(self) -> None:
        """Device prefixes in front of drive letters do not matter."""
        assert path_key("\\\\.\\C:\\VMs\\a.vhdx") == path_key("C:\\VMs\\a.vhdx")
        assert strip_device_prefix("\\\\?\\D:\\x") == "D:\\x"
        assert strip_device_prefix("\\\\nas\\x") == "\\\\nas\\x"

    def test_host_key(self) -> None:
        """host_key folds case and maps blanks to None."""
        assert host_key("HV01") == "hv01"
        assert host_key(None) is None
        assert host_key("  ") is None


class TestPathPredicates:
    """Tests for UNC, containment and cluster storage checks."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("\\\\nas\\vms\\a.vhdx", True),
            ("//nas/vms/a.vhdx", True),
            ("\\\\?\\C:\\a.vhdx", False),
            ("\\\\.\\Volume{1}\\a.vhdx", False),
            ("C:\\a.vhdx", False),
        ],
    )
    def test_is_unc_path(self, path: str, expected: bool) -> None:
        """is_unc_path excludes raw volume identifiers."""
        assert is_unc_path(path) is expected

    def test_is_under(self) -> None:
        """is_under matches whole path components only."""
        assert is_under("C:\\VMs\\web01\\a.vhdx", "C:\\VMs")
        assert is_under("C:\\VMs", "c:\\vms\\")
        assert is_under("C:\\VMs\\a.vhdx", "C:\\")
        assert not is_under("C:\\VMs2\\a.vhdx", "C:\\VMs")
        assert not is_under("D:\\VMs\\a.vhdx", "C:\\VMs")

    def test_is_cluster_storage(self) -> None:
        """is_cluster_storage matches the ClusterStorage mount on any drive."""
        assert is_cluster_storage("C:\\ClusterStorage\\Volume1\\vm.vhdx")
        assert is_cluster_storage("e:\\clusterstorage")
        assert is_cluster_storage("\\\\.\\C:\\ClusterStorage\\Volume1")
        assert not is_cluster_storage("C:\\VMs\\ClusterStorage\\vm.vhdx")
        assert not is_cluster_storage("C:\\ClusterStorageOld\\vm.vhdx")


class TestFileNames:
    """Tests for file name helpers."""

    def test_components(self) -> None:
        """join, parent_of, stem and extension work on Windows paths."""
        assert join("C:\\VMs", "web01", "a.vhdx") == "C:\\VMs\\web01\\a.vhdx"
        assert parent_of("C:\\VMs\\web01\\a.vhdx") == "C:\\VMs\\web01"
        assert parent_of("C:\\VMs\\web01\\") == "C:\\VMs"
        assert stem(f"C:\\VMs\\{GUID}.vmcx") == GUID
        assert extension("C:\\VMs\\A.VHDX") == ".vhdx"

    def test_guids(self) -> None:
        """is_guid accepts bare and braced GUIDs; guid_key normalizes them."""
        assert is_guid(GUID)
        assert is_guid("{" + GUID.lower() + "}")
        assert not is_guid("web01")
        assert guid_key("{" + GUID + "}") == GUID.lower()

    @pytest.mark.parametrize(
        "name", ["a.vhd", "a.VHDX", "a.avhd", "a.avhdx", "floppy.vfd"]
    )
    def test_disk_files(self, name: str) -> None:
        """is_disk_file matches disk extensions case-insensitively."""
        assert is_disk_file(f"C:\\VMs\\{name}")

    def test_metadata_files(self) -> None:
        """is_metadata_file needs a metadata extension and a GUID name."""
        for ext in (".xml", ".bin", ".vsv", ".vmcx", ".vmgs", ".vmrs"):
            assert is_metadata_file(f"C:\\VMs\\{GUID}{ext}")
        assert not is_metadata_file("C:\\VMs\\settings.xml")
        assert not is_metadata_file(f"C:\\VMs\\{GUID}.txt")
        assert not is_disk_file(f"C:\\VMs\\{GUID}.xml")
