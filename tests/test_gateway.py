import io
import socket
import struct

import pytest

from mictcp.gateway import (
    MAX_UDP_SEGMENT_SIZE,
    USAGE,
    GatewayFunction,
    GatewayOptions,
    GatewayProtocol,
    UsageError,
    file_to_faketcp,
    iter_rtp_packets,
    main,
    parse_args,
    read_rtp_packet,
    ts_subtract,
)


def record(sec, nsec, payload):
    return struct.pack("<IIi", sec, nsec, len(payload)) + payload


def test_parse_source_defaults_to_tcp():
    options = parse_args(["-s", "example.com", "9000"])
    assert options == GatewayOptions(
        GatewayFunction.SOURCE, GatewayProtocol.TCP, "example.com", 9000
    )


def test_parse_puits_mictcp():
    options = parse_args(["-t", "mictcp", "-p", "5000"])
    assert options == GatewayOptions(GatewayFunction.PUITS, GatewayProtocol.MICTCP, None, 5000)


def test_parse_options_after_operands():
    options = parse_args(["-p", "5000", "-t", "mictcp"])
    assert options.protocol is GatewayProtocol.MICTCP
    assert options.port == 5000


@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["5000"],
        ["-s", "-p", "5000"],
        ["-p", "-p", "5000"],
        ["-p"],
        ["-p", "host", "5000"],
        ["-s", "5000"],
        ["-x", "-p", "5000"],
        ["-p", "notaport"],
        ["-t"],
    ],
)
def test_parse_usage_errors(argv):
    with pytest.raises(UsageError):
        parse_args(argv)


def test_parse_unknown_transport_message():
    with pytest.raises(UsageError, match="Unrecognized transport : udp"):
        parse_args(["-t", "udp", "-p", "5000"])


def test_ts_subtract_borrows_a_second():
    assert ts_subtract((5, 0), (3, 500_000_000)) == (1, 500_000_000)


@pytest.mark.parametrize(
    "time1, time2",
    [((1, 2), (1, 2)), ((1, 2), (1, 3)), ((0, 999), (4, 0))],
)
def test_ts_subtract_not_positive_is_zero(time1, time2):
    assert ts_subtract(time1, time2) == (0, 0)


@pytest.mark.parametrize(
    "time1, time2",
    [((10, 5), (2, 7)), ((3, 999_999_999), (3, 1)), ((7, 0), (6, 999_999_999))],
)
def test_ts_subtract_adds_back(time1, time2):
    sec, nsec = ts_subtract(time1, time2)
    assert 0 <= nsec < 1_000_000_000
    total = (sec + time2[0]) * 1_000_000_000 + nsec + time2[1]
    assert total == time1[0] * 1_000_000_000 + time1[1]


def test_read_rtp_packet_round_trip():
    stream = io.BytesIO(record(12, 345, b"payload"))
    assert read_rtp_packet(stream, MAX_UDP_SEGMENT_SIZE) == ((12, 345), b"payload")
    assert read_rtp_packet(stream, MAX_UDP_SEGMENT_SIZE) is None


def test_read_rtp_packet_empty_stream():
    assert read_rtp_packet(io.BytesIO(b""), MAX_UDP_SEGMENT_SIZE) is None


def test_read_rtp_packet_too_large():
    stream = io.BytesIO(record(0, 0, b"x" * 20))
    with pytest.raises(ValueError, match="too small"):
        read_rtp_packet(stream, 10)


def test_read_rtp_packet_truncated_header():
    with pytest.raises(ValueError):
        read_rtp_packet(io.BytesIO(b"\x01\x02\x03"), MAX_UDP_SEGMENT_SIZE)


def test_iter_rtp_packets_yields_all_in_order():
    packets = [((1, 0), b"a"), ((1, 500), b"bb"), ((2, 0), b"")]
    data = b"".join(record(sec, nsec, payload) for (sec, nsec), payload in packets)
    assert list(iter_rtp_packets(io.BytesIO(data), MAX_UDP_SEGMENT_SIZE)) == packets


def test_file_to_faketcp_sends_payloads_then_end_marker(tmp_path):
    payloads = [b"first", b"second", b"third"]
    video = tmp_path / "video.bin"
    video.write_bytes(b"".join(record(0, 0, payload) for payload in payloads))

    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as receiver:
        receiver.bind(("127.0.0.1", 0))
        receiver.settimeout(2)
        port = receiver.getsockname()[1]
        file_to_faketcp(str(video), "127.0.0.1", port)
        received = [receiver.recv(MAX_UDP_SEGMENT_SIZE) for _ in range(len(payloads) + 1)]

    assert received == payloads + [b""]


def test_file_to_faketcp_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        file_to_faketcp(str(tmp_path / "absent.bin"), "127.0.0.1", 9)


def test_main_tcp_puits_needs_no_gateway(capsys):
    assert main(["-p", "5000"]) == 0
    assert "No gateway needed for puits using UDP" in capsys.readouterr().out


def test_main_usage_error_prints_usage(capsys):
    assert main(["-s"]) == 1
    assert USAGE in capsys.readouterr().out


def test_main_bad_transport_prints_reason(capsys):
    assert main(["-t", "udp", "-p", "5000"]) == 1
    out = capsys.readouterr().out
    assert "Unrecognized transport : udp" in out
    assert USAGE in out