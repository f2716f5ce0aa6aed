import pytest

from p11probe.constants import CKM_RSA_PKCS, CKR_GENERAL_ERROR
from p11probe.errors import NoSlotsError, OperationError
from p11probe.slots import (
    describe_mechanisms,
    list_mechanisms,
    list_slots,
    select_slot,
    slot_info,
)
from p11probe.testing import MemoryProvider


class GrowingSlots(MemoryProvider):
    """A reader gets plugged in between the sizing and the fill call."""

    def get_slot_list(self, token_present, capacity):
        result = super().get_slot_list(token_present, capacity)
        if capacity is None and 7 not in self.token_slots:
            self.token_slots.append(7)
        return result


class EndlessSlots(MemoryProvider):
    def get_slot_list(self, token_present, capacity):
        result = super().get_slot_list(token_present, capacity)
        self.token_slots.append(max(self.token_slots) + 1)
        return result


def _provider(**kwargs):
    provider = MemoryProvider(**kwargs)
    provider.initialize()
    return provider


def test_list_slots_two_call():
    provider = _provider(slots=(0, 1), empty_slots=(5,))
    assert list_slots(provider) == [0, 1]
    assert list_slots(provider, token_present=False) == [0, 1, 5]
    capacities = [call.args[1] for call in provider.called("C_GetSlotList")]
    assert capacities == [None, 2, None, 3]


def test_list_slots_retries_when_list_grows():
    provider = GrowingSlots(slots=(0,))
    provider.initialize()
    assert list_slots(provider) == [0, 7]
    capacities = [call.args[1] for call in provider.called("C_GetSlotList")]
    assert capacities == [None, 1, 2]


def test_list_slots_failure():
    provider = _provider()
    provider.fail["C_GetSlotList"] = CKR_GENERAL_ERROR
    with pytest.raises(OperationError):
        list_slots(provider)


def test_list_slots_gives_up_on_endless_growth():
    provider = EndlessSlots(slots=(0,))
    provider.initialize()
    with pytest.raises(OperationError):
        list_slots(provider)


def test_mechanisms():
    provider = _provider()
    mechanisms = list_mechanisms(provider, 0)
    assert CKM_RSA_PKCS in mechanisms
    entries = describe_mechanisms(provider, 0, mechanisms)
    assert all(entry.info is not None for entry in entries)

    provider.missing.add("C_GetMechanismInfo")
    assert all(entry.info is None for entry in describe_mechanisms(provider, 0, mechanisms))

    provider.missing.add("C_GetMechanismList")
    assert list_mechanisms(provider, 0) is None


def test_select_slot():
    provider = _provider(slots=(3, 4))
    assert select_slot(provider, [3, 4]) == 3
    assert select_slot(provider, [3, 4], requested=4) == 4
    with pytest.raises(NoSlotsError):
        select_slot(provider, [])


def test_select_slot_without_slot_info():
    provider = _provider(slots=(3, 4), missing={"C_GetSlotInfo"})
    assert select_slot(provider, [3, 4]) == 3
    assert slot_info(provider, 3) is None
    assert provider.called("C_GetSlotInfo") == []
