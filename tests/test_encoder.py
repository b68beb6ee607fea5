import pytest
from PIL import Image

from qrcard.compositor import compose
from qrcard.encoder import DOWNLOAD_FILENAME, decode_png, encode_png, to_data_uri


def test_png_is_lossless():
    img = Image.new("RGBA", (16, 16), (1, 2, 3, 4))
    img.putpixel((5, 5), (250, 128, 7, 200))
    back = decode_png(encode_png(img))
    assert back.mode == "RGBA"
    assert back.tobytes() == img.tobytes()


def test_same_pixels_same_bytes():
    a = Image.new("RGBA", (32, 32), (10, 20, 30, 255))
    b = Image.new("RGBA", (32, 32), (10, 20, 30, 255))
    assert encode_png(a) == encode_png(b)


def test_data_uri_round_trips_through_decode():
    img = Image.new("RGB", (4, 4), (255, 0, 0))
    uri = to_data_uri(encode_png(img))
    assert uri.startswith("data:image/png;base64,")
    assert decode_png(uri).size == (4, 4)


def test_decode_rejects_other_uris():
    with pytest.raises(ValueError):
        decode_png("data:image/jpeg;base64,AAAA")


def test_result_save_uses_download_filename(tmp_path, request_a):
    result = compose(request_a)
    path = result.save(tmp_path)
    assert path.name == DOWNLOAD_FILENAME == "qr-custom.png"
    assert path.read_bytes() == result.png_bytes
    assert decode_png(path.read_bytes()).size == (230, 230)
    assert result.data_uri == to_data_uri(result.png_bytes)
