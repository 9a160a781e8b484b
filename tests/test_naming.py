from devourer.naming import (
    VolumeChapter,
    clean_book_name,
    extract_chapter_and_volume,
    is_manga_archive,
    is_valid_book,
    is_watched_file,
)


def test_volume_and_chapter():
    assert extract_chapter_and_volume("Series Vol.2 Ch.15.epub") == VolumeChapter(2, 15.0)


def test_parenthesised_volume():
    assert extract_chapter_and_volume("Series (v3)") == VolumeChapter(3, None)


def test_decimal_chapter():
    assert extract_chapter_and_volume("Series c10.5.cbz") == VolumeChapter(None, 10.5)


def test_bare_number_is_chapter():
    assert extract_chapter_and_volume("Series [Group] 007.zip") == VolumeChapter(None, 7.0)


def test_volume_only_archive():
    assert extract_chapter_and_volume("Berserk v01.cbz") == VolumeChapter(1, None)


def test_no_numbers():
    assert extract_chapter_and_volume("Oneshot.cbz") == VolumeChapter(None, None)


def test_clean_book_name():
    assert clean_book_name("Dune (1965) [Retail].epub") == "Dune"
    assert clean_book_name("The Hobbit.epub") == "The Hobbit"
    assert clean_book_name("Notes <draft>.pdf") == "Notes"


def test_format_checks():
    assert is_valid_book("a/b/Book.EPUB")
    assert is_valid_book("Book.pdf")
    assert not is_valid_book("Book.cbz")
    assert not is_valid_book("README")

    assert is_manga_archive("Vol 1.cbr")
    assert not is_manga_archive("Vol 1.pdf")

    assert is_watched_file("x.epub")
    assert not is_watched_file("x.txt")
