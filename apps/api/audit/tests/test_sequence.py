from __future__ import annotations

import threading

import pytest

from apps.api.audit.errors import AllocationError
from apps.api.audit.sequence import SequenceAllocator, format_invoice_number


def test_format_invoice_number():
    assert format_invoice_number(7, prefix="INV", pad=6) == "INV-000007"
    assert format_invoice_number(1234567, prefix="INV", pad=6) == "INV-1234567"
    assert format_invoice_number(12, prefix="", pad=4) == "0012"


def test_allocate_increments_per_tenant(fake_db):
    alloc = SequenceAllocator(fake_db, prefix="INV", pad=6)

    a1 = alloc.allocate("T1")
    a2 = alloc.allocate("T1")
    b1 = alloc.allocate("T2")

    assert (a1.sequence, a2.sequence) == (1, 2)
    assert a1.invoice_number == "INV-000001"
    assert a2.invoice_number == "INV-000002"
    assert b1.sequence == 1
    assert fake_db.docs("counters")["invoice_number_T1"]["value"] == 2
    assert fake_db.docs("counters")["invoice_number_T2"]["value"] == 1


def test_allocate_concurrent_callers_get_distinct_numbers(fake_db):
    alloc = SequenceAllocator(fake_db)
    results = []
    lock = threading.Lock()

    def worker():
        for _ in range(25):
            n = alloc.allocate("T1").sequence
            with lock:
                results.append(n)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 200
    assert sorted(results) == list(range(1, 201))


def test_allocate_failure_raises_allocation_error(fake_db):
    fake_db.fail("commit", "transaction")
    alloc = SequenceAllocator(fake_db)

    with pytest.raises(AllocationError) as exc:
        alloc.allocate("T1")
    assert exc.value.step == 1
    assert exc.value.cause is not None
    assert "invoice_number_T1" not in fake_db.docs("counters")


def test_allocate_requires_tenant(fake_db):
    with pytest.raises(AllocationError):
        SequenceAllocator(fake_db).allocate("  ")
