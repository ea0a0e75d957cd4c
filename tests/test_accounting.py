"""Tests for the access accounting engine."""

import pytest

from gasmeter.accounting.engine import AccessAccountingEngine
from gasmeter.common.types import (
    AccessRecord,
    AccountAccessKind,
    GasMeasurement,
    StorageAccessRecord,
    TraceFormatError,
    parse_int,
)

from tests.fixtures.addresses import (
    ECRECOVER_ADDRESS,
    FRESH_ADDRESS,
    TOKEN_ADDRESS,
    VAULT_ADDRESS,
)

COLD_CALL = 100 + 2600
COLD_SLOAD = 100 + 2100


def call(account, *storage, **kwargs):
    return AccessRecord(account=account, storage_accesses=list(storage), **kwargs)


read = StorageAccessRecord.read
write = StorageAccessRecord.write


# ---------------------------------------------------------------------------
# Account accesses
# ---------------------------------------------------------------------------

class TestAccountAccess:
    def test_cold_account_call(self, engine):
        # Not warmed by setup, so the machine pays the cold surcharge too
        # (see "Machine cost of a setup-warmed account" in DESIGN.md)
        m = engine.process(None, [call(VAULT_ADDRESS)])
        assert m == GasMeasurement(machine_gas=COLD_CALL, ideal_gas=COLD_CALL)

    def test_setup_warmed_account(self, engine):
        engine.preprocess([call(VAULT_ADDRESS)])
        m = engine.process(None, [call(VAULT_ADDRESS)])
        assert m.machine_gas == 100
        assert m.ideal_gas == COLD_CALL

    def test_setup_warmth_is_single_shot(self, engine):
        engine.preprocess([call(VAULT_ADDRESS)])
        m = engine.process(None, [call(VAULT_ADDRESS), call(VAULT_ADDRESS)])
        assert m.machine_gas == 200
        assert m.ideal_gas == COLD_CALL + 100
        assert not engine.store.account(VAULT_ADDRESS).warmed_by_setup

    def test_access_list_warmed_account(self, engine):
        engine.store.apply_access_list([(VAULT_ADDRESS, [])])
        m = engine.process(None, [call(VAULT_ADDRESS)])
        assert m.machine_gas == COLD_CALL
        assert m.ideal_gas == 100

    def test_value_into_uninitialized_account(self, engine):
        m = engine.process(None, [call(FRESH_ADDRESS, value=1, initialized=False)])
        assert m.machine_gas == m.ideal_gas == COLD_CALL + 25000

    def test_no_surcharge_without_value(self, engine):
        m = engine.process(None, [call(FRESH_ADDRESS, value=0, initialized=False)])
        assert m.machine_gas == m.ideal_gas == COLD_CALL

    def test_no_surcharge_for_delegatecall(self, engine):
        m = engine.process(None, [
            call(FRESH_ADDRESS, kind=AccountAccessKind.DELEGATECALL, value=1, initialized=False),
        ])
        assert m.machine_gas == COLD_CALL

    def test_selfdestruct_into_uninitialized_account(self, engine):
        m = engine.process(None, [
            call(FRESH_ADDRESS, kind=AccountAccessKind.SELFDESTRUCT, value=5, initialized=False),
        ])
        assert m.machine_gas == m.ideal_gas == COLD_CALL + 25000

    @pytest.mark.parametrize("kind", [AccountAccessKind.CREATE, AccountAccessKind.RESUME])
    def test_create_and_resume_skip_cold_surcharge(self, engine, kind):
        m = engine.process(None, [call(VAULT_ADDRESS, kind=kind, initialized=False)])
        assert m.machine_gas == m.ideal_gas == 100
        assert engine.store.account(VAULT_ADDRESS).is_warm

    def test_reverted_create_still_warms(self, engine):
        m = engine.process(None, [
            call(VAULT_ADDRESS, kind=AccountAccessKind.CREATE, reverted=True),
            call(VAULT_ADDRESS),
        ])
        assert m.machine_gas == m.ideal_gas == 200

    def test_reverted_access_charges_but_does_not_warm(self, engine):
        m = engine.process(None, [call(VAULT_ADDRESS, reverted=True), call(VAULT_ADDRESS)])
        assert m.machine_gas == m.ideal_gas == 2 * COLD_CALL
        assert engine.store.account(VAULT_ADDRESS).is_warm

    def test_precompile_is_always_warm(self, engine):
        m = engine.process(None, [call(ECRECOVER_ADDRESS)])
        assert m.machine_gas == m.ideal_gas == 100

    def test_special_addresses_are_ignored(self, fees):
        engine = AccessAccountingEngine(fees, special_addresses=[VAULT_ADDRESS])
        engine.preprocess([call(VAULT_ADDRESS)])
        m = engine.process(None, [call(VAULT_ADDRESS, read(1, 0))])
        assert m == GasMeasurement()
        assert VAULT_ADDRESS not in engine.store

    def test_order_matters(self, engine):
        engine.preprocess([call(VAULT_ADDRESS)])
        reverted_first = engine.process(None, [
            call(TOKEN_ADDRESS, reverted=True), call(TOKEN_ADDRESS),
        ])
        engine.reset()
        plain_first = engine.process(None, [
            call(TOKEN_ADDRESS), call(TOKEN_ADDRESS, reverted=True),
        ])
        assert reverted_first.ideal_gas == 2 * COLD_CALL
        assert plain_first.ideal_gas == COLD_CALL + 100


# ---------------------------------------------------------------------------
# Target exemption
# ---------------------------------------------------------------------------

class TestTargetExemption:
    def test_first_target_access_has_no_ideal_cost(self, engine):
        m = engine.process(TOKEN_ADDRESS, [call(TOKEN_ADDRESS)])
        assert m.machine_gas == COLD_CALL
        assert m.ideal_gas == 0

    def test_exemption_fires_once(self, engine):
        m = engine.process(TOKEN_ADDRESS, [call(TOKEN_ADDRESS), call(TOKEN_ADDRESS)])
        assert m.machine_gas == COLD_CALL + 100
        assert m.ideal_gas == 100

    def test_setup_warmed_target(self, engine):
        engine.preprocess([call(TOKEN_ADDRESS)])
        m = engine.process(TOKEN_ADDRESS, [call(TOKEN_ADDRESS)])
        assert m.machine_gas == 100
        assert m.ideal_gas == 0

    def test_value_into_uninitialized_target(self, engine):
        m = engine.process(TOKEN_ADDRESS, [call(TOKEN_ADDRESS, value=1, initialized=False)])
        assert m.machine_gas == COLD_CALL + 25000
        assert m.ideal_gas == 0

    def test_target_found_later_in_trace(self, engine):
        m = engine.process(TOKEN_ADDRESS, [call(VAULT_ADDRESS), call(TOKEN_ADDRESS)])
        assert m.machine_gas == 2 * COLD_CALL
        assert m.ideal_gas == COLD_CALL

    def test_target_storage_is_not_exempt(self, engine):
        m = engine.process(TOKEN_ADDRESS, [call(TOKEN_ADDRESS, read(1, 0))])
        assert m.ideal_gas == COLD_SLOAD

    def test_reset_rearms_exemption(self, engine):
        engine.process(TOKEN_ADDRESS, [call(TOKEN_ADDRESS)])
        engine.reset()
        m = engine.process(TOKEN_ADDRESS, [call(TOKEN_ADDRESS)])
        assert m.ideal_gas == 0

    def test_second_scenario_without_reset_undercounts(self, engine):
        # Known limitation: warmth from the first scenario leaks into the second
        trace = [call(VAULT_ADDRESS, read(1, 0))]
        first = engine.process(None, trace)
        second = engine.process(None, [call(VAULT_ADDRESS, read(1, 0))])
        assert first.ideal_gas == COLD_CALL + COLD_SLOAD
        assert second.ideal_gas == 200


# ---------------------------------------------------------------------------
# Storage accesses
# ---------------------------------------------------------------------------

class TestStorageAccess:
    def test_repeated_cold_read(self, engine):
        engine.preprocess([call(TOKEN_ADDRESS)])
        m = engine.process(None, [call(TOKEN_ADDRESS, read(1, 5), read(1, 5))])
        # account: machine warm (setup), ideal cold
        assert m.machine_gas == 100 + COLD_SLOAD + 100
        assert m.ideal_gas == COLD_CALL + COLD_SLOAD + 100

    def test_setup_warmed_slot_read(self, engine):
        engine.preprocess([call(TOKEN_ADDRESS, read(1, 5))])
        m = engine.process(None, [call(TOKEN_ADDRESS, read(1, 5))])
        assert m.machine_gas == 200
        assert m.ideal_gas == COLD_CALL + COLD_SLOAD

    def test_access_list_slot_read(self, engine):
        engine.store.apply_access_list([(TOKEN_ADDRESS, [1])])
        m = engine.process(None, [call(TOKEN_ADDRESS, read(1, 5))])
        assert m.machine_gas == COLD_CALL + COLD_SLOAD
        assert m.ideal_gas == 200

    def test_write_to_fresh_slot(self, engine):
        m = engine.process(None, [call(TOKEN_ADDRESS, write(1, 0, 7))])
        assert m.machine_gas == m.ideal_gas == COLD_CALL + 22100
        assert m.machine_refund == m.ideal_refund == 0

    def test_clearing_slot_written_in_setup(self, engine):
        engine.preprocess([call(TOKEN_ADDRESS, write(1, 0, 5))])
        m = engine.process(None, [call(TOKEN_ADDRESS, write(1, 5, 0))])
        # machine: original 0, slot warm and dirty -> restore refund
        assert m.machine_gas == 100 + 100
        assert m.machine_refund == 19900
        # ideal: original 5, slot cold -> clear refund
        assert m.ideal_gas == COLD_CALL + 5000
        assert m.ideal_refund == 4800

    def test_set_then_clear_in_one_call(self, engine):
        m = engine.process(None, [call(TOKEN_ADDRESS, write(1, 0, 5), write(1, 5, 0))])
        assert m.ideal_gas == COLD_CALL + 22100 + 100
        assert m.ideal_refund == 19900
        assert m.machine_refund == 19900

    def test_second_write_is_dirty(self, engine):
        m = engine.process(None, [call(TOKEN_ADDRESS, write(1, 3, 4), write(1, 4, 5))])
        assert m.ideal_gas == COLD_CALL + 5000 + 100

    def test_reverted_write(self, engine):
        m = engine.process(None, [
            call(TOKEN_ADDRESS, write(1, 5, 0, reverted=True)),
            call(TOKEN_ADDRESS, write(1, 5, 0)),
        ])
        # Both writes priced cold; only the surviving one earns a refund
        assert m.ideal_gas == COLD_CALL + 5000 + 100 + 5000
        assert m.ideal_refund == m.machine_refund == 4800
        assert engine.store.slot(TOKEN_ADDRESS, 1).is_warm


# ---------------------------------------------------------------------------
# Preprocessing
# ---------------------------------------------------------------------------

class TestPreprocess:
    def test_records_originals(self, engine):
        engine.preprocess([call(TOKEN_ADDRESS, write(1, 0, 1), write(1, 1, 2))])
        slot = engine.store.slot(TOKEN_ADDRESS, 1)
        assert slot.touched
        assert slot.warmed_by_setup
        assert slot.machine_original_value == 0
        assert slot.ideal_original_value == 2

    def test_charges_nothing(self, engine):
        engine.preprocess([call(TOKEN_ADDRESS, write(1, 0, 1))])
        assert engine.process(None, []) == GasMeasurement()

    def test_skips_reverted_storage(self, engine):
        engine.preprocess([call(TOKEN_ADDRESS, write(1, 0, 1, reverted=True))])
        slot = engine.store.slot(TOKEN_ADDRESS, 1)
        assert not slot.touched
        assert not slot.warmed_by_setup
        assert engine.store.account(TOKEN_ADDRESS).warmed_by_setup

    def test_skips_precompiles(self, engine):
        engine.preprocess([call(ECRECOVER_ADDRESS)])
        assert ECRECOVER_ADDRESS not in engine.store

    def test_access_list_slot_keeps_ideal_original(self, engine):
        engine.store.apply_access_list([(TOKEN_ADDRESS, [1])])
        engine.preprocess([call(TOKEN_ADDRESS, write(1, 0, 9))])
        slot = engine.store.slot(TOKEN_ADDRESS, 1)
        assert not slot.touched
        assert slot.ideal_original_value == 9


class TestGasMeasurement:
    def test_add(self):
        a = GasMeasurement(1, 2, 3, 4)
        b = GasMeasurement(10, 20, 30, -40)
        assert a + b == GasMeasurement(11, 22, 33, -36)
        assert (a + b).gas_delta == 11

    def test_to_json(self):
        assert GasMeasurement(1, 2, 3, 4).to_json() == {
            "machineGas": 1, "idealGas": 2, "machineRefund": 3, "idealRefund": 4,
        }


class TestTraceDecoding:
    def test_access_kind(self):
        assert AccountAccessKind.parse("create") is AccountAccessKind.CREATE
        assert AccountAccessKind.parse(6) is AccountAccessKind.RESUME
        assert AccountAccessKind.parse("7") is AccountAccessKind.BALANCE
        with pytest.raises(TraceFormatError):
            AccountAccessKind.parse("jump")

    def test_quantities(self):
        assert parse_int("0x10") == 16
        assert parse_int("42") == 42
        with pytest.raises(TraceFormatError):
            parse_int(True)
        with pytest.raises(TraceFormatError):
            parse_int("ten")

    def test_access_record(self):
        record = AccessRecord.from_json({
            "account": "0x" + "70" * 20,
            "kind": "selfdestruct",
            "value": "0x5",
            "initialized": False,
            "storageAccesses": [{"slot": 1, "previousValue": 3}],
        })
        assert record.account == TOKEN_ADDRESS
        assert record.initializes_account
        assert record.storage_accesses == [read(1, 3)]

    def test_flags_must_be_booleans(self):
        with pytest.raises(TraceFormatError):
            StorageAccessRecord.from_json({"slot": 1, "isWrite": "false"})
        with pytest.raises(TraceFormatError):
            AccessRecord.from_json({"account": "0x" + "70" * 20, "initialized": 0})

    def test_records_must_be_objects(self):
        with pytest.raises(TraceFormatError):
            AccessRecord.from_json("0x" + "70" * 20)
        with pytest.raises(TraceFormatError):
            StorageAccessRecord.from_json(7)

    def test_missing_account(self):
        with pytest.raises(TraceFormatError):
            AccessRecord.from_json({"kind": "call"})
