"""
test_locks_permissions.py - Unit tests for per-key locks, the tick guard and roles
"""

import threading

import pytest

from tickmarket.accounts import Role, new_company, new_player
from tickmarket.core import PermissionDenied
from tickmarket.locks import LockManager, SingleFlight, TickAlreadyRunning
from tickmarket.permissions import (
    ROLE_CAPABILITIES, Capability, has_capability, require_capability,
)


# ============================================================================
# LOCKS
# ============================================================================

class TestLockManager:

    def test_same_key_same_lock(self):
        locks = LockManager()
        assert locks.lock_for("ACME") is locks.lock_for("ACME")
        assert locks.lock_for("ACME") is not locks.lock_for("MOON")

    def test_hold_is_reentrant(self):
        locks = LockManager()
        with locks.hold("ACME", "player:alice"):
            with locks.hold("ACME"):
                pass

    def test_duplicate_keys_ignored(self):
        locks = LockManager()
        with locks.hold("ACME", "ACME"):
            pass
        assert locks.lock_for("ACME").acquire(blocking=False)
        locks.lock_for("ACME").release()

    def test_released_after_exception(self):
        locks = LockManager()
        with pytest.raises(RuntimeError):
            with locks.hold("ACME"):
                raise RuntimeError("boom")
        acquired = []
        thread = threading.Thread(target=lambda: acquired.append(locks.lock_for("ACME").acquire(timeout=1)))
        thread.start()
        thread.join()
        assert acquired == [True]

    def test_opposite_orders_do_not_deadlock(self):
        locks = LockManager()
        counter = {'n': 0}

        def worker(keys):
            for _ in range(200):
                with locks.hold(*keys):
                    counter['n'] += 1

        threads = [
            threading.Thread(target=worker, args=(("ACME", "player:alice"),)),
            threading.Thread(target=worker, args=(("player:alice", "ACME"),)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert not any(t.is_alive() for t in threads)
        assert counter['n'] == 400

    def test_discard(self):
        locks = LockManager()
        first = locks.lock_for("ACME")
        locks.discard("ACME")
        assert locks.lock_for("ACME") is not first


class TestSingleFlight:

    def test_second_entry_rejected(self):
        flight = SingleFlight("tick")
        with flight.enter():
            assert flight.running
            with pytest.raises(TickAlreadyRunning):
                with flight.enter():
                    pass
        assert not flight.running

    def test_released_after_exception(self):
        flight = SingleFlight()
        with pytest.raises(ValueError):
            with flight.enter():
                raise ValueError("step failed")
        with flight.enter():
            pass


# ============================================================================
# PERMISSIONS
# ============================================================================

class TestRoles:

    @pytest.mark.parametrize("role, capability, allowed", [
        (Role.BANNED, Capability.TRANSFER, False),
        (Role.BANNED, Capability.TRADE, False),
        (Role.LIMITED, Capability.TRANSFER, True),
        (Role.LIMITED, Capability.TRADE, False),
        (Role.LIMITED, Capability.BORROW, False),
        (Role.USER, Capability.TRADE, True),
        (Role.USER, Capability.CREATE_ASSET, True),
        (Role.USER, Capability.MODERATE, False),
        (Role.MOD, Capability.MODERATE, True),
        (Role.MOD, Capability.ADMIN, False),
        (Role.ADMIN, Capability.ADMIN, True),
    ])
    def test_matrix(self, role, capability, allowed):
        assert has_capability(new_player("p1", "P", role), capability) is allowed

    def test_admin_has_everything(self):
        assert ROLE_CAPABILITIES[Role.ADMIN] == frozenset(Capability)

    def test_roles_are_nested(self):
        order = [Role.BANNED, Role.LIMITED, Role.USER, Role.MOD, Role.ADMIN]
        for lower, higher in zip(order, order[1:]):
            assert ROLE_CAPABILITIES[lower] <= ROLE_CAPABILITIES[higher]

    def test_companies_have_no_capabilities(self):
        company = new_company("acme", "Acme", "alice")
        assert not has_capability(company, Capability.TRADE)

    def test_require_raises(self):
        with pytest.raises(PermissionDenied):
            require_capability(new_player("p1", "P", Role.USER), Capability.ADMIN)
        require_capability(new_player("p1", "P", Role.ADMIN), Capability.ADMIN)
