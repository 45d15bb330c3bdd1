import zipfile
from io import BytesIO

from mediaprocessing.bundle import BUNDLE_NAME, make_zip, write_zip


def entries(data):
    with zipfile.ZipFile(BytesIO(data)) as zf:
        return {info.filename: (zf.read(info), info.compress_type) for info in zf.infolist()}


def test_entries_are_deflated():
    contents = entries(make_zip([("a.jpg", b"a" * 1000), ("b.pdf", b"%PDF")]))
    assert contents == {
        "a.jpg": (b"a" * 1000, zipfile.ZIP_DEFLATED),
        "b.pdf": (b"%PDF", zipfile.ZIP_DEFLATED),
    }


def test_duplicate_names_get_suffixes():
    data = make_zip([("x.jpg", b"1"), ("x.jpg", b"2"), ("x.jpg", b"3")])
    with zipfile.ZipFile(BytesIO(data)) as zf:
        assert zf.namelist() == ["x.jpg", "x-1.jpg", "x-2.jpg"]
        assert zf.read("x-2.jpg") == b"3"


def test_directories_are_stripped():
    data = make_zip([("../../etc/passwd", b"p"), ("C:\\Users\\me\\photo.png", b"q")])
    with zipfile.ZipFile(BytesIO(data)) as zf:
        assert zf.namelist() == ["passwd", "photo.png"]


def test_empty_bundle():
    with zipfile.ZipFile(BytesIO(make_zip([]))) as zf:
        assert zf.namelist() == []


def test_write_zip_creates_parents(tmp_path):
    path = write_zip([("a.txt", b"hi")], tmp_path / "out" / BUNDLE_NAME)
    assert path.exists()
    assert entries(path.read_bytes())["a.txt"][0] == b"hi"
