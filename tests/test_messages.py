import io

import pytest

from conflux.messages import (
    MAX_READ_LEN,
    SKS_ZP_NBYTES,
    Config,
    DbRepl,
    DbRqst,
    Done,
    Elements,
    Error,
    Flush,
    FullElements,
    MsgType,
    Prefix,
    ProtocolError,
    ReconRqstFull,
    ReconRqstPoly,
    SyncFail,
    pad_sks_element,
    read_int,
    read_len,
    read_msg,
    read_prefix,
    read_string,
    read_zp,
    read_zz_array,
    write_int,
    write_msg,
    write_msg_direct,
    write_prefix,
    write_string,
    write_zp,
    write_zz_array,
)
from conflux.zp import P_SKS, ZSet, Zp


def _config():
    return Config(
        version="3.1415", http_port=11371, bit_quantum=2, mbar=5, filters="testing"
    )


def test_config_round_trip():
    conf = _config()
    buf = io.BytesIO()
    conf.marshal(buf)
    conf2 = Config.unmarshal(io.BytesIO(buf.getvalue()))
    assert conf2.version == conf.version
    assert conf2.http_port == conf.http_port
    assert conf2.bit_quantum == conf.bit_quantum
    assert conf2.mbar == conf.mbar
    assert conf2.filters == conf.filters


def test_config_msg_round_trip():
    conf = _config()
    buf = io.BytesIO()
    write_msg(buf, conf)
    msg = read_msg(io.BytesIO(buf.getvalue()))
    assert isinstance(msg, Config)
    assert msg.version == conf.version
    assert msg.http_port == conf.http_port
    assert msg.bit_quantum == conf.bit_quantum
    assert msg.mbar == conf.mbar
    assert msg.filters == conf.filters


def test_config_custom_keys_round_trip():
    conf = Config(version="1.1.6", http_port=80, custom={"colour": "blue"})
    buf = io.BytesIO()
    conf.marshal(buf)
    assert buf.getvalue()[:4] == b"\x00\x00\x00\x06"
    assert Config.unmarshal(io.BytesIO(buf.getvalue())) == conf


def test_config_bad_int_length():
    buf = io.BytesIO()
    write_int(buf, 1)
    write_string(buf, "mbar")
    write_int(buf, 8)
    with pytest.raises(ProtocolError, match="Invalid length=8"):
        Config.unmarshal(io.BytesIO(buf.getvalue()))


def test_sks_element_width():
    assert SKS_ZP_NBYTES == 17
    assert pad_sks_element(b"\x01") == b"\x01" + b"\x00" * 16
    assert len(pad_sks_element(b"")) == 17


def test_write_int_big_endian():
    buf = io.BytesIO()
    write_int(buf, 258)
    assert buf.getvalue() == b"\x00\x00\x01\x02"
    assert read_int(io.BytesIO(buf.getvalue())) == 258


def test_read_len_limit():
    buf = io.BytesIO()
    write_int(buf, MAX_READ_LEN + 1)
    with pytest.raises(ProtocolError, match="exceeds maximum limit"):
        read_len(io.BytesIO(buf.getvalue()))


def test_short_read_raises():
    with pytest.raises(ProtocolError):
        read_int(io.BytesIO(b"\x00\x01"))


def test_string_round_trip_and_empty():
    buf = io.BytesIO()
    write_string(buf, "héllo")
    write_string(buf, "")
    r = io.BytesIO(buf.getvalue())
    assert read_string(r) == "héllo"
    assert read_string(r) == ""


def test_zp_wire_form():
    z = Zp.from_int(P_SKS, 65536)
    buf = io.BytesIO()
    write_zp(buf, z)
    data = buf.getvalue()
    assert data == b"\x00\x00\x01" + b"\x00" * 14
    assert read_zp(io.BytesIO(data)) == z


def test_zz_array_round_trip():
    arr = [Zp.from_int(P_SKS, n) for n in (0, 1, 65537, P_SKS - 1)]
    buf = io.BytesIO()
    write_zz_array(buf, arr)
    assert len(buf.getvalue()) == 4 + 4 * 17
    assert read_zz_array(io.BytesIO(buf.getvalue())) == arr


def test_zz_array_limit():
    buf = io.BytesIO()
    write_int(buf, MAX_READ_LEN // SKS_ZP_NBYTES + 1)
    with pytest.raises(ProtocolError, match="exceeds maximum limit"):
        read_zz_array(io.BytesIO(buf.getvalue()))


def test_prefix_round_trip():
    prefix = Prefix(10, b"\xab\x03")
    buf = io.BytesIO()
    write_prefix(buf, prefix)
    assert buf.getvalue() == b"\x00\x00\x00\x0a\x00\x00\x00\x02\xab\x03"
    assert read_prefix(io.BytesIO(buf.getvalue())) == prefix


def test_empty_prefix_skips_bytes():
    buf = io.BytesIO()
    write_int(buf, 0)
    write_int(buf, 3)
    buf.write(b"xyz")
    r = io.BytesIO(buf.getvalue())
    assert read_prefix(r) == Prefix(0)
    assert r.read() == b"xyz"


def test_prefix_normalises_data_length():
    assert Prefix(4, b"\x0f\xff").data == b"\x0f"
    assert Prefix(16, b"\x01").data == b"\x01\x00"
    with pytest.raises(ValueError):
        Prefix(-1)


@pytest.mark.parametrize(
    "msg",
    [
        ReconRqstPoly(
            prefix=Prefix(2, b"\x02"),
            size=7,
            samples=[Zp.from_int(P_SKS, 3), Zp.from_int(P_SKS, 99)],
        ),
        ReconRqstFull(
            prefix=Prefix(4, b"\x05"),
            elements=ZSet([Zp.from_int(P_SKS, 65537), Zp.from_int(P_SKS, 65539)]),
        ),
        Elements(zset=ZSet([Zp.from_int(P_SKS, 12)])),
        FullElements(zset=ZSet([Zp.from_int(P_SKS, 13), Zp.from_int(P_SKS, 14)])),
        SyncFail(),
        Done(),
        Flush(),
        Error(text="boom"),
        DbRqst(text="query"),
        DbRepl(text="answer"),
        _config(),
    ],
)
def test_message_round_trip(msg):
    buf = io.BytesIO()
    write_msg(buf, msg)
    back = read_msg(io.BytesIO(buf.getvalue()))
    assert type(back) is type(msg)
    assert back == msg


def test_write_msg_direct_frame():
    buf = io.BytesIO()
    write_msg_direct(buf, Done())
    assert buf.getvalue() == b"\x00\x00\x00\x01\x05"


def test_write_msg_multiple_in_order():
    buf = io.BytesIO()
    write_msg(buf, Flush(), Error(text="x"), Done())
    r = io.BytesIO(buf.getvalue())
    assert [type(read_msg(r)) for _ in range(3)] == [Flush, Error, Done]
    assert r.read() == b""


def test_unknown_message_code():
    buf = io.BytesIO()
    write_int(buf, 1)
    buf.write(b"\x63")
    with pytest.raises(ProtocolError, match="unexpected message code: 99"):
        read_msg(io.BytesIO(buf.getvalue()))


def test_empty_message_body():
    with pytest.raises(ProtocolError):
        read_msg(io.BytesIO(b"\x00\x00\x00\x00"))


def test_msg_type_names():
    assert str(MsgType.RECON_RQST_POLY) == "ReconRqstPoly"
    assert str(MsgType.CONFIG) == "Config"
    assert str(Error(text="bad")) == "Error: bad"
    assert str(Flush()) == "Flush"