import threading

import bagit
import pytest

from bagr.bag import BagBuilder, BuildState, create_bag, is_bag, open_bag
from bagr.digest import DigestAlgorithm
from bagr.errors import AlgorithmUnsupported, IoFailure, OperationCancelled, PathRejected
from bagr.fileops import StagedWrites
from bagr.tags import BagInfo

HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
HELLO_WORLD_SHA256 = "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"
BAGIT_TXT_SHA256 = "1712ecfb074bf29c4188ad3421032509159a09739fd604f8fe57038b4ddefcc9"


def write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def source(tmp_path):
    src = tmp_path / "source"
    write(src / "hello.txt", "hello")
    write(src / "sub" / "world.txt", "hello world")
    return src


def read_lines(path):
    with open(path, encoding="utf-8") as fp:
        return fp.read().splitlines()


def manifest_files(bag_dir):
    return sorted(p.name for p in bag_dir.iterdir() if "manifest-" in p.name)


def test_create_bag_copy(source, tmp_path):
    dst = tmp_path / "bag"
    info = BagInfo()
    info.add("Contact-Name", "Someone")
    bag = create_bag(source, dst, algorithms=["sha256"], bag_info=info)

    assert is_bag(dst)
    assert (dst / "data" / "sub" / "world.txt").read_text() == "hello world"
    assert (source / "hello.txt").exists()
    assert manifest_files(dst) == ["manifest-sha256.txt", "tagmanifest-sha256.txt"]
    assert read_lines(dst / "manifest-sha256.txt") == [
        f"{HELLO_SHA256} data/hello.txt",
        f"{HELLO_WORLD_SHA256} data/sub/world.txt",
    ]
    assert read_lines(dst / "bagit.txt") == ["BagIt-Version: 1.0", "Tag-File-Character-Encoding: UTF-8"]

    tag_lines = read_lines(dst / "tagmanifest-sha256.txt")
    assert [line.split(" ", 1)[1] for line in tag_lines] == ["bag-info.txt", "bagit.txt", "manifest-sha256.txt"]
    assert f"{BAGIT_TXT_SHA256} bagit.txt" in tag_lines

    assert bag.info.get("Contact-Name") == "Someone"
    assert bag.info.payload_oxum == "16.2"
    assert bag.info.bagging_date
    assert bag.info.software_agent.startswith("bagr v")
    assert bag.version == "1.0"
    assert bag.payload_files() == ["data/hello.txt", "data/sub/world.txt"]
    assert not [p for p in dst.iterdir() if p.name.startswith(".bagr-tmp-")]

    bagit.Bag(str(dst)).validate()


def test_create_bag_in_place(source):
    create_bag(source, algorithms=["md5", "sha256"])

    assert sorted(p.name for p in source.iterdir()) == [
        "bag-info.txt", "bagit.txt", "data", "manifest-md5.txt", "manifest-sha256.txt",
        "tagmanifest-md5.txt", "tagmanifest-sha256.txt",
    ]
    assert (source / "data" / "hello.txt").read_text() == "hello"
    assert open_bag(source).algorithms == (DigestAlgorithm.MD5, DigestAlgorithm.SHA256)
    bagit.Bag(str(source)).validate()


def test_default_algorithm_is_sha512(source, tmp_path):
    bag = create_bag(source, tmp_path / "bag")
    assert bag.algorithms == (DigestAlgorithm.SHA512,)
    assert (tmp_path / "bag" / "manifest-sha512.txt").exists()


def test_empty_algorithms_rejected(source, tmp_path):
    with pytest.raises(AlgorithmUnsupported):
        create_bag(source, tmp_path / "bag", algorithms=[])


def test_builds_are_deterministic(source, tmp_path):
    info = BagInfo()
    info.add("Bagging-Date", "2024-01-01")
    create_bag(source, tmp_path / "one", algorithms=["sha256", "md5"], bag_info=info)
    create_bag(source, tmp_path / "two", algorithms=["sha256", "md5"], bag_info=info)
    for name in manifest_files(tmp_path / "one") + ["bag-info.txt", "bagit.txt"]:
        assert (tmp_path / "one" / name).read_bytes() == (tmp_path / "two" / name).read_bytes()


def test_rejected_payload_name_writes_nothing(source, tmp_path):
    write(source / "bad\nname.txt", "x")
    dst = tmp_path / "bag"
    with pytest.raises(PathRejected):
        create_bag(source, dst)
    assert not dst.exists()


def test_rejected_name_in_place_leaves_source(source):
    write(source / "sub" / "bad\rname.txt", "x")
    with pytest.raises(PathRejected):
        create_bag(source)
    assert sorted(p.name for p in source.iterdir()) == ["hello.txt", "sub"]


def test_copy_into_existing_destination_keeps_it(source, tmp_path):
    dst = tmp_path / "bag"
    dst.mkdir()
    write(source / "bad\nname.txt", "x")
    with pytest.raises(PathRejected):
        create_bag(source, dst)
    assert dst.exists()
    assert list(dst.iterdir()) == []


def test_destination_with_data_is_refused(source, tmp_path):
    (tmp_path / "bag" / "data").mkdir(parents=True)
    with pytest.raises(IoFailure):
        create_bag(source, tmp_path / "bag")


def test_exclude_hidden_copy_leaves_source(source, tmp_path):
    write(source / ".DS_Store", "junk")
    create_bag(source, tmp_path / "bag", exclude_hidden=True)
    assert (source / ".DS_Store").exists()
    assert not (tmp_path / "bag" / "data" / ".DS_Store").exists()


def test_exclude_hidden_in_place_deletes(source):
    write(source / ".DS_Store", "junk")
    write(source / "sub" / ".cache" / "x", "junk")
    bag = create_bag(source, exclude_hidden=True)
    assert not (source / ".DS_Store").exists()
    assert not (source / "data" / ".DS_Store").exists()
    assert not (source / "data" / "sub" / ".cache").exists()
    assert bag.payload_files() == ["data/hello.txt", "data/sub/world.txt"]


def test_hidden_files_included_by_default(source, tmp_path):
    write(source / ".keep", "")
    bag = create_bag(source, tmp_path / "bag")
    assert "data/.keep" in bag.payload_files()


def test_write_failure_leaves_no_bag(source, tmp_path, monkeypatch):
    calls = []
    original = StagedWrites.write

    def failing_write(self, target, data):
        calls.append(target.name)
        if target.name.startswith("tagmanifest"):
            raise IoFailure(target, "Error writing")
        return original(self, target, data)

    monkeypatch.setattr(StagedWrites, "write", failing_write)
    dst = tmp_path / "bag"
    with pytest.raises(IoFailure):
        create_bag(source, dst, algorithms=["sha256"])
    assert "manifest-sha256.txt" in calls
    assert not dst.exists()


def test_in_place_failure_restores_source(source, monkeypatch):
    def failing_commit(self):
        raise IoFailure("bagit.txt", "Error replacing")

    monkeypatch.setattr(StagedWrites, "commit", failing_commit)
    with pytest.raises(IoFailure):
        create_bag(source)
    assert sorted(p.name for p in source.iterdir()) == ["hello.txt", "sub"]
    assert (source / "sub" / "world.txt").read_text() == "hello world"


def test_builder_states(source, tmp_path):
    builder = BagBuilder(source, tmp_path / "bag")
    assert builder.state is BuildState.COLLECTING
    builder.build()
    assert builder.state is BuildState.COMPLETE

    builder = BagBuilder(tmp_path / "missing", tmp_path / "bag2")
    with pytest.raises(IoFailure):
        builder.build()

    cancel = threading.Event()
    cancel.set()
    builder = BagBuilder(source, tmp_path / "bag3", cancel=cancel)
    with pytest.raises(OperationCancelled):
        builder.build()
    assert builder.state is BuildState.FAILED
    assert not (tmp_path / "bag3").exists()


def test_destination_inside_source(source):
    dst = source / "bag"
    create_bag(source, dst, algorithms=["sha256"])
    assert (dst / "data" / "hello.txt").exists()
    assert not (dst / "data" / "bag").exists()
    assert (source / "hello.txt").exists()


def test_in_place_commit_failure_leaves_no_manifest(source, fail_replace):
    fail_replace(2)
    with pytest.raises(IoFailure):
        create_bag(source, algorithms=["sha256"])
    assert sorted(p.name for p in source.iterdir()) == ["hello.txt", "sub"]
    assert (source / "hello.txt").read_text() == "hello"


def test_copy_commit_failure_leaves_no_bag(source, tmp_path, fail_replace):
    fail_replace(2)
    dst = tmp_path / "bag"
    with pytest.raises(IoFailure):
        create_bag(source, dst, algorithms=["sha256"])
    assert not dst.exists()
