"""
Mosquitto Manager - Broker Control Package
============================================
The core that keeps a Mosquitto broker in line with the configuration
document, and observes what the broker is doing.

Modules:
    model.py       : ConfigurationDocument (pydantic)
    store.py       : state.json load/save, validation, default bootstrap
    generator.py   : document -> mosquitto.conf / password lines / ACL files
    credentials.py : mosquitto_passwd invocation, internal service account
    admins.py      : administrator seeding and bcrypt verification
    secure.py      : staging -> secure directory sync with owner/mode fixes
    control.py     : SIGHUP / SIGTERM through the broker pid file
    pipeline.py    : startup/apply reconciliation pipeline
    tail.py        : polling log tailer
    tracker.py     : live session tracker (log line state machine)
    stats.py       : $SYS stats aggregator (aiomqtt)
    certs.py       : TLS bundle generation through openssl
    importer.py    : mosquitto.conf -> document

Usage:
    from brokerctl import Reconciler

    result = await reconciler.run_apply_reconciliation()
"""

from brokerctl.pipeline import Reconciler, ReconcileResult
from brokerctl.store import DocumentStore
from brokerctl.tracker import SessionTracker
from brokerctl.stats import StatsAggregator

__all__ = [
    "DocumentStore",
    "Reconciler",
    "ReconcileResult",
    "SessionTracker",
    "StatsAggregator",
]
