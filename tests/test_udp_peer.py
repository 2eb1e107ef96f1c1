import socket

import pytest

from coroflow.coroutine import start
from coroflow.io_scheduler import IoScheduler, IoSchedulerOptions
from coroflow.poll import PollOp, PollStatus
from coroflow.thread_pool import ThreadPoolOptions
from coroflow.udp_peer import PeerInfo, UdpNotBoundError, UdpPeer


@pytest.fixture
def scheduler():
    sched = IoScheduler(IoSchedulerOptions(pool=ThreadPoolOptions(thread_count=1)))
    yield sched
    sched.shutdown()


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


def _run_all(*coros, timeout=10.0):
    handles = [start(coro) for coro in coros]
    for handle in handles:
        assert handle.wait(timeout)
    return [handle.result() for handle in handles]


def test_peer_info_defaults():
    info = PeerInfo()
    assert info.address == "127.0.0.1"
    assert info.port == 8080


def test_peer_info_normalises_and_compares():
    assert PeerInfo("0123:4567:89ab:cdef:0123:4567:89ab:cdef", 1).address == "123:4567:89ab:cdef:123:4567:89ab:cdef"
    assert PeerInfo("127.0.0.1", 9000) == PeerInfo("127.0.0.1", 9000)
    assert PeerInfo("127.0.0.1", 1) < PeerInfo("127.0.0.1", 2)


def test_peer_info_rejects_bad_address_and_port():
    with pytest.raises(ValueError):
        PeerInfo("not an address", 80)
    with pytest.raises(ValueError):
        PeerInfo("127.0.0.1", 70000)


def test_udp_one_way(scheduler):
    msg = b"aaaaaaaaaaaaaaaaaaaaabbbbbbbbbbbbbbbbbcccccccccccccccccc"
    port = _free_port()
    receiver = UdpPeer(scheduler, PeerInfo("0.0.0.0", port))

    async def recv_task():
        await scheduler.schedule()
        status = await receiver.poll(PollOp.READ, 5.0)
        sender_info, data = receiver.recvfrom(64)
        return status, sender_info, data

    async def send_task():
        await scheduler.schedule()
        with UdpPeer(scheduler) as peer:
            return peer.sendto(PeerInfo("127.0.0.1", port), msg)

    with receiver:
        (status, sender_info, data), remaining = _run_all(recv_task(), send_task())

    assert status is PollStatus.EVENT
    assert sender_info.address == "127.0.0.1"
    assert data == msg
    assert remaining == b""


def test_udp_echo_peers(scheduler):
    peer1_msg = b"Hello from peer1!"
    peer2_msg = b"Hello from peer2!!"
    port1 = _free_port()
    port2 = _free_port()

    peer1 = UdpPeer(scheduler, PeerInfo("0.0.0.0", port1))
    peer2 = UdpPeer(scheduler, PeerInfo("0.0.0.0", port2))

    async def peer_task(me, peer_port, send_first, my_msg, expected_msg):
        await scheduler.schedule()
        peer_info = PeerInfo("127.0.0.1", peer_port)
        if send_first:
            assert me.sendto(peer_info, my_msg) == b""
        status = await me.poll(PollOp.READ, 5.0)
        assert status is PollStatus.EVENT
        recv_info, data = me.recvfrom(64)
        assert recv_info == peer_info
        assert data == expected_msg
        if not send_first:
            assert me.sendto(peer_info, my_msg) == b""
        return data

    with peer1, peer2:
        received = _run_all(
            peer_task(peer2, port1, False, peer2_msg, peer1_msg),
            peer_task(peer1, port2, True, peer1_msg, peer2_msg),
        )

    assert received == [peer1_msg, peer2_msg]


def test_sendto_empty_buffer_returns_empty(scheduler):
    with UdpPeer(scheduler) as peer:
        assert peer.sendto(PeerInfo("127.0.0.1", _free_port()), b"") == b""


def test_recvfrom_unbound_raises(scheduler):
    with UdpPeer(scheduler) as peer:
        with pytest.raises(UdpNotBoundError):
            peer.recvfrom(64)


def test_recvfrom_without_data_would_block(scheduler):
    with UdpPeer(scheduler, PeerInfo("127.0.0.1", _free_port())) as peer:
        with pytest.raises(BlockingIOError):
            peer.recvfrom(64)


def test_poll_times_out_without_data(scheduler):
    peer = UdpPeer(scheduler, PeerInfo("127.0.0.1", _free_port()))

    async def task():
        await scheduler.schedule()
        return await peer.poll(PollOp.READ, 0.05)

    with peer:
        (status,) = _run_all(task())
    assert status is PollStatus.TIMEOUT


def test_closed_peer_cannot_send(scheduler):
    peer = UdpPeer(scheduler)
    with peer:
        pass
    peer.close()
    with pytest.raises(OSError):
        peer.sendto(PeerInfo("127.0.0.1", _free_port()), b"data")