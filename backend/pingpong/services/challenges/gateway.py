"""Notification gateways.

``deliver(endpoint, payload)`` is fire-and-forget: failures are logged here
and never reach the caller, so a lost notification cannot undo or re-trigger
a committed challenge transition.
"""

import logging

import requests


logger = logging.getLogger(__name__)


class SocketIOGateway:
    """Pushes payloads to a Socket.IO room (``team:<id>``)."""

    event = 'notification'

    def __init__(self, socketio, namespace='/ws'):
        self.socketio = socketio
        self.namespace = namespace

    def deliver(self, endpoint, payload):
        try:
            self.socketio.emit(self.event, payload, to=endpoint, namespace=self.namespace)
        except Exception as exc:
            logger.warning(f"[notify-failed] endpoint={endpoint} type={payload.get('type')} error={exc}")


class WebhookGateway:
    """POSTs payloads as JSON to an incoming-webhook URL."""

    def __init__(self, timeout=5, http=None):
        self.timeout = timeout
        self.http = http or requests

    def deliver(self, endpoint, payload):
        try:
            r = self.http.post(endpoint, json=payload, timeout=self.timeout)
            if r.status_code >= 400:
                logger.warning(
                    f"[notify-failed] endpoint={endpoint} type={payload.get('type')} status={r.status_code} body={r.text[:200]}"
                )
        except requests.RequestException as exc:
            logger.warning(f"[notify-failed] endpoint={endpoint} type={payload.get('type')} error={exc}")


class RoutingGateway:
    """Webhook for http(s) endpoints, socket room for everything else."""

    def __init__(self, webhook, realtime):
        self.webhook = webhook
        self.realtime = realtime

    def deliver(self, endpoint, payload):
        if str(endpoint).startswith(('http://', 'https://')):
            self.webhook.deliver(endpoint, payload)
        else:
            self.realtime.deliver(endpoint, payload)
