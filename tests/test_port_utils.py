import socket

from utils.port_utils import check_port_availability, is_port_in_use


def test_listening_port_is_reported_busy():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port = s.getsockname()[1]

        assert is_port_in_use(port)
        available, message = check_port_availability(port)

    assert available is False
    assert str(port) in message


def test_free_port_is_available():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]

    assert check_port_availability(port) == (True, "Port is free")
