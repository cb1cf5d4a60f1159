import time

import yaml

from conftest import FakeTransport
from mindrace.competitor import CompetitorState
from mindrace.connection import ConnectionBoard, ConnectionStatus
from mindrace.link_manager import AuthorizedPorts, LinkManager
from mindrace.protocol import Side
from mindrace.race import RaceSession
from mindrace.watchdog import Watchdog


def _manager(cfg, session, transport, ports=None):
    cfg["serial"]["ports"] = list(ports or [])
    return LinkManager(cfg, session.board, session.submit, transport=transport)


def test_reopen_authorized_opens_at_most_two(cfg, clock, tmp_path):
    AuthorizedPorts(cfg["serial"]["authorized_path"]).add("/dev/ttyACM0")
    transport = FakeTransport()
    session = RaceSession(now=clock)
    links = _manager(cfg, session, transport, ports=["/dev/ttyACM1", "/dev/ttyACM0", "/dev/ttyACM2"])
    try:
        opened = links.reopen_authorized()
        assert [link.port for link in opened] == ["/dev/ttyACM0", "/dev/ttyACM1"]
        assert set(transport.opened) == {"/dev/ttyACM0", "/dev/ttyACM1"}
        assert session.board.status(Side.POLICIA) is ConnectionStatus.CONNECTING
        assert session.board.status(Side.TAXI) is ConnectionStatus.CONNECTING
        assert links.reopen_authorized() == []
    finally:
        links.close_all()


def test_open_failure_is_isolated(cfg, clock):
    transport = FakeTransport(fail={"/dev/bad"})
    session = RaceSession(now=clock)
    links = _manager(cfg, session, transport, ports=["/dev/bad", "/dev/good"])
    try:
        opened = links.reopen_authorized()
        assert [link.port for link in opened] == ["/dev/good"]
        assert not links.disabled
    finally:
        links.close_all()


def test_ingest_frames_decodes_and_routes(cfg, clock):
    session = RaceSession(now=clock)
    links = _manager(cfg, session, FakeTransport(), ports=["/dev/fake0"])
    try:
        (link,) = links.reopen_authorized()
        events = []
        events += links.ingest(link, '{"lado":"')
        events += links.ingest(link, 'policia","voltas":3}\n{"lado":"ta')
        events += links.ingest(link, 'xi","voltas":1}\n')
        assert [e.side for e in events] == [Side.POLICIA, Side.TAXI]
        assert link.pending == ""

        session.tick()
        assert session.competitor(Side.POLICIA).laps == 3
        assert session.competitor(Side.TAXI).laps == 1
    finally:
        links.close_all()


def test_garbage_mutates_nothing(cfg, clock):
    session = RaceSession(now=clock)
    links = _manager(cfg, session, FakeTransport(), ports=["/dev/fake0"])
    try:
        (link,) = links.reopen_authorized()
        before = session.board.snapshot()
        assert links.ingest(link, 'garbage\n{"voltas":3}\n{"lado":"nobody"}\n[1]\n') == []
        session.tick()
        assert session.board.snapshot() == before
        assert session.competitor(Side.POLICIA) == CompetitorState(Side.POLICIA)
        assert session.competitor(Side.TAXI) == CompetitorState(Side.TAXI)
        assert link.side is None
    finally:
        links.close_all()


def test_quality_marks_side_connected(cfg, clock):
    session = RaceSession(now=clock)
    links = _manager(cfg, session, FakeTransport(), ports=["/dev/fake0"])
    try:
        (link,) = links.reopen_authorized()
        links.ingest(link, '{"lado":"taxi","conexao":200}\n')
        session.tick()
        assert links.quality(Side.TAXI) == 200
        assert session.board.status(Side.TAXI) is ConnectionStatus.CONNECTING

        links.ingest(link, '{"conexao":0}\n')
        session.tick()
        assert links.quality(Side.TAXI) == 0
        assert link.quality == 0
        assert session.board.status(Side.TAXI) is ConnectionStatus.CONNECTED
        assert links.link_for(Side.TAXI) is link
        assert links.link_for(Side.POLICIA) is None
    finally:
        links.close_all()


def test_link_quality_is_clamped(cfg, clock):
    session = RaceSession(now=clock)
    links = _manager(cfg, session, FakeTransport(), ports=["/dev/fake0"])
    try:
        (link,) = links.reopen_authorized()
        links.ingest(link, '{"lado":"taxi","conexao":-5}\n')
        assert link.quality == 0
        links.ingest(link, '{"conexao":900}\n')
        assert link.quality == 200
    finally:
        links.close_all()


def test_pair_missing_asks_until_two_links(cfg, clock):
    transport = FakeTransport(ports=["/dev/ttyUSB0", "/dev/ttyUSB1", "/dev/ttyUSB2"])
    session = RaceSession(now=clock)
    links = _manager(cfg, session, transport)
    offered = []

    def chooser(candidates):
        offered.append(list(candidates))
        return candidates[0]

    try:
        opened = links.pair_missing(chooser)
        assert [link.port for link in opened] == ["/dev/ttyUSB0", "/dev/ttyUSB1"]
        assert offered == [
            ["/dev/ttyUSB0", "/dev/ttyUSB1", "/dev/ttyUSB2"],
            ["/dev/ttyUSB1", "/dev/ttyUSB2"],
        ]
        assert AuthorizedPorts(cfg["serial"]["authorized_path"]).load() == ["/dev/ttyUSB0", "/dev/ttyUSB1"]
        assert links.pair_missing(chooser) == []
        assert len(offered) == 2
        assert not links.pairing
    finally:
        links.close_all()


def test_pair_missing_only_fills_the_gap(cfg, clock):
    transport = FakeTransport(ports=["/dev/a", "/dev/b"])
    session = RaceSession(now=clock)
    links = _manager(cfg, session, transport, ports=["/dev/a"])
    try:
        links.reopen_authorized()
        opened = links.pair_missing(lambda candidates: candidates[0])
        assert [link.port for link in opened] == ["/dev/b"]
        assert len(links.links) == 2
    finally:
        links.close_all()


def test_pair_missing_cancel_and_collision(cfg, clock):
    session = RaceSession(now=clock)
    links = _manager(cfg, session, FakeTransport(ports=["/dev/a"]))
    try:
        assert links.pair_missing(lambda candidates: None) == []
        assert links.links == []

        def reentrant(candidates):
            assert links.pairing
            assert links.pair_missing(lambda c: c[0]) == []
            return None

        assert links.pair_missing(reentrant) == []
        assert not links.pairing
    finally:
        links.close_all()


def test_chooser_failure_ends_pairing(cfg, clock):
    session = RaceSession(now=clock)
    links = _manager(cfg, session, FakeTransport(ports=["/dev/a"]))

    def broken(candidates):
        raise EOFError

    assert links.pair_missing(broken) == []
    assert not links.pairing


def test_missing_transport_disables_everything(cfg, clock):
    for transport in (None, FakeTransport(available=False)):
        session = RaceSession(now=clock)
        links = _manager(cfg, session, transport, ports=["/dev/a"])
        assert links.disabled
        assert session.board.status(Side.POLICIA) is ConnectionStatus.ERROR
        assert session.board.status(Side.TAXI) is ConnectionStatus.ERROR
        assert links.reopen_authorized() == []
        assert links.pair_missing(lambda c: "/dev/a") == []
        links.close_all()

        session.reset()
        assert session.board.status(Side.TAXI) is ConnectionStatus.ERROR


def test_close_all_tolerates_failures(cfg, clock):
    session = RaceSession(now=clock)
    transport = FakeTransport()
    links = _manager(cfg, session, transport, ports=["/dev/a", "/dev/b"])
    links.reopen_authorized()
    transport.opened["/dev/a"]._close_error = OSError("device gone")

    links.close_all()

    assert links.links == []
    for ser in transport.opened.values():
        assert ser.closed
        assert ser.cancelled


def test_reader_thread_feeds_the_session(cfg, clock):
    session = RaceSession(now=clock)
    transport = FakeTransport()
    links = _manager(cfg, session, transport, ports=["/dev/a"])
    try:
        links.reopen_authorized()
        ser = transport.opened["/dev/a"]
        ser.push(b'{"lado":"policia","con')
        ser.push('centracao":42,"conexao":0}\n{"evento":"blink"}\n'.encode("utf-8"))

        deadline = time.time() + 2.0
        while time.time() < deadline:
            session.tick()
            if session.competitor(Side.POLICIA).last_blink_at is not None:
                break
            time.sleep(0.01)

        assert session.competitor(Side.POLICIA).concentration == 42
        assert session.competitor(Side.POLICIA).last_blink_at is not None
        assert session.board.status(Side.POLICIA) is ConnectionStatus.CONNECTED
    finally:
        links.close_all()


def test_reader_survives_out_of_range_numbers(cfg, clock):
    session = RaceSession(now=clock)
    transport = FakeTransport()
    links = _manager(cfg, session, transport, ports=["/dev/a"])
    try:
        (link,) = links.reopen_authorized()
        ser = transport.opened["/dev/a"]
        ser.push(b'{"lado":"taxi","boost":1' + b"0" * 400 + b"}\n")
        ser.push(b"[" * 100000 + b"\n")
        ser.push(b'{"lado":"taxi","boost":9}\n')

        deadline = time.time() + 2.0
        while time.time() < deadline and session.competitor(Side.TAXI).boost != 9:
            session.tick()
            time.sleep(0.01)
        assert session.competitor(Side.TAXI).boost == 9
        assert link.is_open
        assert links.drop_closed() == []
    finally:
        links.close_all()


def test_utf8_split_across_reads(cfg, clock):
    session = RaceSession(now=clock)
    transport = FakeTransport()
    links = _manager(cfg, session, transport, ports=["/dev/a"])
    try:
        (link,) = links.reopen_authorized()
        payload = '{"lado":"taxi","nome":"Tácio","boost":9}\n'.encode("utf-8")
        cut = payload.index("á".encode("utf-8")) + 1
        ser = transport.opened["/dev/a"]
        ser.push(payload[:cut])
        ser.push(payload[cut:])

        deadline = time.time() + 2.0
        while time.time() < deadline and session.competitor(Side.TAXI).boost != 9:
            session.tick()
            time.sleep(0.01)
        assert session.competitor(Side.TAXI).boost == 9
    finally:
        links.close_all()


def test_drop_closed_forgets_dead_links(cfg, clock):
    session = RaceSession(now=clock)
    transport = FakeTransport()
    links = _manager(cfg, session, transport, ports=["/dev/a", "/dev/b"])
    try:
        links.reopen_authorized()
        transport.opened["/dev/a"].closed = True

        deadline = time.time() + 2.0
        while time.time() < deadline and not links.drop_closed():
            time.sleep(0.01)
        assert [link.port for link in links.links] == ["/dev/b"]
        assert transport.opened["/dev/a"].cancelled
    finally:
        links.close_all()


def test_watchdog_reports_silent_links(cfg, clock):
    session = RaceSession(now=clock)
    links = _manager(cfg, session, FakeTransport(), ports=["/dev/a"])
    try:
        (link,) = links.reopen_authorized()
        dog = Watchdog(cfg, links)
        assert dog.tick(now=1000.0) == []

        links.ingest(link, '{"lado":"policia","boost":1}\n')
        rx = link.last_rx_at
        assert dog.tick(now=rx + 0.5) == []
        assert dog.tick(now=rx + 5.0) == ["/dev/a"]
        assert dog.tick(now=rx + 6.0) == []
    finally:
        links.close_all()


def test_authorized_ports_file(tmp_path):
    path = tmp_path / "nested" / "auth.yaml"
    store = AuthorizedPorts(str(path))
    assert store.load() == []
    store.add("/dev/a")
    store.add("/dev/a")
    store.add("COM4")
    assert store.load() == ["/dev/a", "COM4"]
    assert yaml.safe_load(path.read_text()) == {"ports": ["/dev/a", "COM4"]}


def test_board_is_forward_only():
    board = ConnectionBoard()
    board.observe_quality(Side.POLICIA, 10)
    board.mark_connecting()
    assert board.status(Side.POLICIA) is ConnectionStatus.CONNECTED
    assert board.status(Side.TAXI) is ConnectionStatus.CONNECTING
    board.observe_quality(Side.POLICIA, 200)
    assert board.status(Side.POLICIA) is ConnectionStatus.CONNECTED
    assert board.connected_count() == 1
