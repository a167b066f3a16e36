import pytest

from labloan.errors import InsufficientInventory, ValidationError
from labloan.services import inventory


class TestReserveRelease:
    def test_reserve_decrements_available(self, db, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=5)
        inventory.reserve(db, equipment, 2)
        assert equipment.available_quantity == 3
        assert equipment.total_quantity == 5

    def test_reserve_beyond_available_fails_and_changes_nothing(self, db, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3, available=1)
        with pytest.raises(InsufficientInventory) as exc:
            inventory.reserve(db, equipment, 2)
        assert exc.value.available == 1
        assert equipment.available_quantity == 1

    def test_release_restores_available(self, db, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3, available=1)
        inventory.release(db, equipment, 2)
        assert equipment.available_quantity == 3

    def test_release_beyond_total_fails(self, db, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3, available=2)
        with pytest.raises(InsufficientInventory):
            inventory.release(db, equipment, 2)
        assert equipment.available_quantity == 2

    @pytest.mark.parametrize('qty', [0, -1])
    def test_non_positive_quantity_rejected(self, db, lab_x, make_equipment, qty):
        equipment = make_equipment(lab_x, total=3)
        with pytest.raises(ValidationError):
            inventory.reserve(db, equipment, qty)


class TestEnsureAvailable:
    def test_does_not_hold_stock(self, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3)
        inventory.ensure_available(equipment, 3)
        assert equipment.available_quantity == 3

    def test_over_request(self, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3)
        with pytest.raises(InsufficientInventory):
            inventory.ensure_available(equipment, 4)


class TestResize:
    def test_growing_total_grows_available(self, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3, available=1)
        inventory.resize(equipment, 5)
        assert (equipment.total_quantity, equipment.available_quantity) == (5, 3)

    def test_shrinking_below_units_on_loan_fails(self, lab_x, make_equipment):
        equipment = make_equipment(lab_x, total=3, available=1)
        with pytest.raises(InsufficientInventory):
            inventory.resize(equipment, 1)
        assert (equipment.total_quantity, equipment.available_quantity) == (3, 1)
