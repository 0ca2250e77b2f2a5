"""
Pytest configuration and shared fixtures. Collaborators are the in-memory
fakes from _helper, so no Postgres, Redis or SQS is needed.
"""
import os
import sys

import pytest

_test_dir = os.path.dirname(os.path.abspath(__file__))
if _test_dir not in sys.path:
    sys.path.insert(0, _test_dir)

from _helper import FakeNotifier, FakePackingSlipService, InMemoryOrderStore  # noqa: E402

from partner_orders.lifecycle import OrderLifecycle  # noqa: E402


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def packing_slips():
    return FakePackingSlipService()


@pytest.fixture
def lifecycle(store, notifier, packing_slips):
    return OrderLifecycle(store=store, notifier=notifier, packing_slips=packing_slips)
