import queue
import socket
import threading

import pytest

from mictcp.core import (
    HEADER_SIZE,
    MAX_PAYLOAD_SIZE,
    AppBuffer,
    IpLayer,
    format_header,
    now_msec,
    now_usec,
)
from mictcp.pdu import Header, Pdu, StartMode


def _free_udp_ports(count):
    sockets = [socket.socket(socket.AF_INET, socket.SOCK_DGRAM) for _ in range(count)]
    try:
        for sock in sockets:
            sock.bind(("", 0))
        return [sock.getsockname()[1] for sock in sockets]
    finally:
        for sock in sockets:
            sock.close()


@pytest.fixture
def ports():
    return _free_udp_ports(2)


@pytest.fixture
def layers(ports):
    cs_port, sc_port = ports
    server = IpLayer(StartMode.SERVER, cs_port, sc_port)
    client = IpLayer(StartMode.CLIENT, cs_port, sc_port)
    yield server, client
    client.close()
    server.close()


def _pdu(payload=b"hello"):
    return Pdu(Header(source_port=33000, dest_port=1337, seq_num=1), payload)


def test_app_buffer_is_fifo():
    buffer = AppBuffer()
    buffer.put(b"first")
    buffer.put(b"second")
    assert buffer.get(100) == b"first"
    assert buffer.get(100) == b"second"
    assert len(buffer) == 0


def test_app_buffer_truncates_to_max_size():
    buffer = AppBuffer()
    buffer.put(b"abcdef")
    assert buffer.get(3) == b"abc"


def test_app_buffer_get_waits_for_put():
    buffer = AppBuffer()
    timer = threading.Timer(0.1, buffer.put, args=(b"late",))
    timer.start()
    try:
        assert buffer.get(10) == b"late"
    finally:
        timer.join()


def test_app_buffer_negative_size_raises():
    with pytest.raises(ValueError):
        AppBuffer().get(-1)


def test_client_to_server_delivery(layers):
    server, client = layers
    pdu = _pdu()
    assert client.ip_send(pdu, "localhost") == len(pdu.payload)
    received = server.ip_recv(2000)
    assert received == (pdu, "localhost")


def test_server_to_client_delivery(layers):
    server, client = layers
    reply = Pdu(Header(source_port=1337, dest_port=33000, ack=True, ack_num=1))
    assert server.ip_send(reply, "localhost") == 0
    received = client.ip_recv(2000)
    assert received is not None
    assert received[0] == reply


def test_full_loss_drops_packets(layers):
    server, client = layers
    client.set_loss_rate(100)
    pdu = _pdu(b"gone")
    assert client.ip_send(pdu, "localhost") == len(b"gone")
    assert server.ip_recv(200) is None


def test_recv_timeout_returns_none(layers):
    server, _ = layers
    assert server.ip_recv(50) is None


def test_recv_truncates_payload(layers):
    server, client = layers
    client.ip_send(_pdu(b"abcdef"), "localhost")
    received = server.ip_recv(2000, 3)
    assert received is not None
    assert received[0].payload == b"abc"


def test_default_max_payload_fills_datagram(layers):
    server, client = layers
    payload = b"x" * MAX_PAYLOAD_SIZE
    pdu = _pdu(payload)
    assert len(pdu.to_bytes()) == 1500
    assert client.ip_send(pdu, "localhost") == MAX_PAYLOAD_SIZE
    received = server.ip_recv(2000)
    assert received is not None
    assert received[0].payload == payload
    assert len(received[0].payload) + HEADER_SIZE == 1500


def test_start_dispatches_to_handler(layers):
    server, client = layers
    seen = queue.Queue()
    server.start(lambda pdu, host: seen.put((pdu, host)))
    pdu = _pdu(b"via thread")
    client.ip_send(pdu, "localhost")
    assert seen.get(timeout=2) == (pdu, "localhost")


def test_start_twice_raises(layers):
    server, _ = layers
    server.start(lambda pdu, host: None)
    with pytest.raises(RuntimeError):
        server.start(lambda pdu, host: None)


def test_negative_loss_rate_raises(layers):
    _, client = layers
    with pytest.raises(ValueError):
        client.set_loss_rate(-1)


def test_closed_layer_refuses_io(ports):
    cs_port, sc_port = ports
    layer = IpLayer(StartMode.CLIENT, cs_port, sc_port)
    layer.close()
    assert layer.closed is True
    with pytest.raises(RuntimeError):
        layer.ip_send(_pdu(), "localhost")
    with pytest.raises(RuntimeError):
        layer.ip_recv(10)


def test_second_server_on_same_port_fails(layers, ports):
    cs_port, sc_port = ports
    with pytest.raises(OSError):
        IpLayer(StartMode.SERVER, cs_port, sc_port)


def test_app_buffer_through_layer(layers):
    server, _ = layers
    server.app_buffer_put(b"message")
    assert server.app_buffer_get(1000) == b"message"


def test_context_manager_closes(ports):
    cs_port, sc_port = ports
    with IpLayer(StartMode.CLIENT, cs_port, sc_port) as layer:
        assert layer.closed is False
    assert layer.closed is True


def test_format_header():
    pdu = Pdu(Header(source_port=1, dest_port=2, seq_num=3, ack_num=4))
    assert format_header(pdu) == "SP: 1, DP: 2, SEQ: 3, ACK: 4"


def test_clock_units_agree():
    usec = now_usec()
    msec = now_msec()
    assert usec // 1000 <= msec <= usec // 1000 + 1000