import threading

import requests

from pingpong.services.challenges.accumulator import (
    create_challenge, issue_challenge, submit_response,
)
from pingpong.services.challenges.dispatcher import BROADCAST, SCOREBOARD, LifecycleDispatcher
from pingpong.services.challenges.gateway import RoutingGateway, SocketIOGateway, WebhookGateway
from pingpong.services.challenges.state import CLOSED, DELETED, ISSUED, ChangeEvent

from conftest import RecordingGateway


def _issued(store):
    challenge = create_challenge(store, 'T1', 'host')
    issue_challenge(store, challenge.id, 1000)
    return challenge.id


def _fill(store, cid):
    for responder, ts in [('A', 1500), ('B', 1200), ('C', 1800)]:
        submit_response(store, cid, responder, ts)


def test_broadcast_sent_once_for_created_and_issued_events(memory_store, gateway):
    cid = _issued(memory_store)
    dispatcher = LifecycleDispatcher(memory_store, gateway)

    assert dispatcher.drain() == 2
    assert memory_store.pending_count() == 0
    broadcasts = gateway.of_type('challenge')
    assert len(broadcasts) == 1
    endpoint, payload = broadcasts[0]
    assert endpoint == 'team:T1'
    assert payload['challenge_id'] == cid
    assert memory_store.get(cid).broadcast_sent


def test_redelivered_transitions_do_not_repeat_notifications(memory_store, gateway):
    cid = _issued(memory_store)
    _fill(memory_store, cid)
    dispatcher = LifecycleDispatcher(memory_store, gateway)
    dispatcher.drain()

    for kind in (ISSUED, CLOSED, CLOSED, ISSUED):
        memory_store.redeliver(ChangeEvent(kind=kind, challenge_id=cid))
    dispatcher.drain()

    assert len(gateway.of_type('challenge')) == 1
    scoreboards = gateway.of_type('scoreboard')
    assert len(scoreboards) == 1
    entries = scoreboards[0][1]['entries']
    assert [(e['responder'], e['latency']) for e in entries] == [('B', 200), ('A', 500), ('C', 800)]


def test_handle_reports_what_was_sent(memory_store, gateway):
    cid = _issued(memory_store)
    _fill(memory_store, cid)
    dispatcher = LifecycleDispatcher(memory_store, gateway)

    closed = ChangeEvent(kind=CLOSED, challenge_id=cid)
    issued = ChangeEvent(kind=ISSUED, challenge_id=cid)
    assert dispatcher.handle(issued) == BROADCAST
    assert dispatcher.handle(issued) is None
    assert dispatcher.handle(closed) == SCOREBOARD
    assert dispatcher.handle(closed) is None


def test_unissued_challenge_is_not_broadcast(memory_store, gateway):
    challenge = create_challenge(memory_store, 'T1', 'host')
    LifecycleDispatcher(memory_store, gateway).drain()
    assert gateway.deliveries == []
    assert not memory_store.get(challenge.id).broadcast_sent


def test_deleted_record_is_a_no_op(memory_store, gateway):
    cid = _issued(memory_store)
    memory_store.delete(cid)
    events = list(memory_store.subscribe_to_changes())
    assert {e.kind for e in events} == {DELETED}

    assert LifecycleDispatcher(memory_store, gateway).drain() == 2
    assert gateway.deliveries == []
    assert memory_store.pending_count() == 0


def test_failed_delivery_is_not_retried(memory_store):
    cid = _issued(memory_store)
    failing = RecordingGateway(fail=True)
    LifecycleDispatcher(memory_store, failing).drain()
    assert len(failing.deliveries) == 1
    assert memory_store.get(cid).broadcast_sent

    healthy = RecordingGateway()
    LifecycleDispatcher(memory_store, healthy).drain()
    assert healthy.deliveries == []
    assert memory_store.pending_count() == 0


def test_custom_endpoint_resolution(memory_store, gateway):
    _issued(memory_store)
    dispatcher = LifecycleDispatcher(memory_store, gateway, lambda team: f"https://hooks.example/{team}")
    dispatcher.drain()
    assert gateway.deliveries[0][0] == 'https://hooks.example/T1'


def test_concurrent_dispatchers_notify_once(memory_store, gateway):
    cid = _issued(memory_store)
    _fill(memory_store, cid)
    workers = 6
    barrier = threading.Barrier(workers)

    def drain():
        barrier.wait()
        LifecycleDispatcher(memory_store, gateway, max_attempts=20).drain()

    threads = [threading.Thread(target=drain) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(gateway.of_type('challenge')) == 1
    assert len(gateway.of_type('scoreboard')) == 1


class FakeResponse:
    def __init__(self, status_code, text=''):
        self.status_code = status_code
        self.text = text


class FakeHttp:
    def __init__(self, response=None, exc=None):
        self.calls = []
        self.response = response or FakeResponse(200)
        self.exc = exc

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json, timeout))
        if self.exc:
            raise self.exc
        return self.response


def test_webhook_gateway_posts_json():
    http = FakeHttp()
    WebhookGateway(timeout=3, http=http).deliver('https://hooks.example/T1', {'type': 'challenge'})
    assert http.calls == [('https://hooks.example/T1', {'type': 'challenge'}, 3)]


def test_webhook_gateway_swallows_failures(caplog):
    WebhookGateway(http=FakeHttp(exc=requests.ConnectionError('down'))).deliver('https://x', {'type': 'scoreboard'})
    WebhookGateway(http=FakeHttp(FakeResponse(500, 'boom'))).deliver('https://x', {'type': 'scoreboard'})
    assert sum('[notify-failed]' in r.getMessage() for r in caplog.records) == 2


class FakeSocketIO:
    def __init__(self, fail=False):
        self.emitted = []
        self.fail = fail

    def emit(self, event, payload, to=None, namespace=None):
        if self.fail:
            raise RuntimeError('no server')
        self.emitted.append((event, payload, to, namespace))


def test_routing_gateway_picks_transport():
    http = FakeHttp()
    sio = FakeSocketIO()
    gateway = RoutingGateway(WebhookGateway(http=http), SocketIOGateway(sio))
    gateway.deliver('https://hooks.example/T1', {'type': 'challenge'})
    gateway.deliver('team:T2', {'type': 'scoreboard'})
    assert [c[0] for c in http.calls] == ['https://hooks.example/T1']
    assert sio.emitted == [('notification', {'type': 'scoreboard'}, 'team:T2', '/ws')]


def test_socketio_gateway_swallows_failures():
    SocketIOGateway(FakeSocketIO(fail=True)).deliver('team:T1', {'type': 'challenge'})


def test_far_future_response_still_gets_a_scoreboard(memory_store, gateway):
    cid = _issued(memory_store)
    for responder, ts in [('A', 1500), ('B', 1200), ('C', 10 ** 15)]:
        assert submit_response(memory_store, cid, responder, ts).accepted

    LifecycleDispatcher(memory_store, gateway).drain()

    scoreboards = gateway.of_type('scoreboard')
    assert len(scoreboards) == 1
    assert scoreboards[0][1]['entries'][2]['clock_anomaly'] is True
    assert memory_store.pending_count() == 0


def test_render_failure_leaves_scoreboard_unclaimed(memory_store, gateway, monkeypatch):
    from pingpong.services.challenges import dispatcher as dispatcher_module

    cid = _issued(memory_store)
    _fill(memory_store, cid)
    real_compose = dispatcher_module.compose

    def broken_compose(*args, **kwargs):
        raise RuntimeError('render failed')

    monkeypatch.setattr(dispatcher_module, 'compose', broken_compose)
    LifecycleDispatcher(memory_store, gateway).drain()
    assert gateway.of_type('scoreboard') == []
    assert not memory_store.get(cid).scoreboard_sent
    assert memory_store.pending_count() == 1

    monkeypatch.setattr(dispatcher_module, 'compose', real_compose)
    LifecycleDispatcher(memory_store, gateway).drain()
    assert len(gateway.of_type('scoreboard')) == 1
    assert memory_store.pending_count() == 0
