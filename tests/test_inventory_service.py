from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from rollship.models import UnitKind
from rollship.services.errors import (
    ConflictError,
    InsufficientInventoryError,
    NotFoundError,
    UnitAlreadySold,
    ValidationError,
)
from rollship.services.inventory_service import (
    bulk_delete_jumbo_rolls,
    consume_unit,
    cut_divided_rolls,
    delete_divided_roll,
    delete_jumbo_roll,
    divided_suffix,
    find_unit_by_barcode,
    get_jumbo_roll,
    get_unit,
    inspect_unit,
    list_inspection_logs,
    list_units,
    next_roll_no,
    register_jumbo_roll,
    release_unit,
    resize_divided_roll,
    set_remaining_length,
    update_jumbo_roll,
)
from tests.support import add_jumbo, add_order, item, make_session_factory


class InventoryServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.db = self.session_factory()

    def tearDown(self) -> None:
        self.db.close()

    def test_divided_suffix_is_spreadsheet_style(self) -> None:
        self.assertEqual(divided_suffix(0), 'A')
        self.assertEqual(divided_suffix(25), 'Z')
        self.assertEqual(divided_suffix(26), 'AA')
        self.assertEqual(divided_suffix(27), 'AB')

    def test_roll_numbers_follow_month_sequence(self) -> None:
        first = register_jumbo_roll(
            self.db,
            barcode='J-1',
            material_type='Kraft',
            basis_weight=80,
            width=100,
            length=500,
            arrival_date=date(2026, 3, 4),
        )
        self.assertEqual(first.roll_no, 'SHZ26030001')
        self.assertEqual(next_roll_no(self.db, today=date(2026, 3, 20)), 'SHZ26030002')
        self.assertEqual(next_roll_no(self.db, today=date(2026, 4, 1)), 'SHZ26040001')

    def test_register_rejects_duplicate_barcode_and_bad_length(self) -> None:
        add_jumbo(self.db, 'J-1')
        with self.assertRaises(ConflictError):
            add_jumbo(self.db, 'J-1')
        with self.assertRaises(ValidationError):
            add_jumbo(self.db, 'J-2', length='0')

    def test_cut_decrements_parent_and_names_children(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000', weight='400')

        rolls = cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('300'), count=2)

        self.assertEqual([roll.roll_no for roll in rolls], [f'{parent.roll_no}A', f'{parent.roll_no}B'])
        self.assertEqual(rolls[0].barcode, rolls[0].roll_no)
        self.assertEqual(rolls[0].weight, Decimal('120.000'))
        self.assertEqual(get_jumbo_roll(self.db, parent.id).remaining_length, Decimal('400'))

        more = cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('100'), count=1)
        self.assertEqual(more[0].roll_no, f'{parent.roll_no}C')

    def test_divided_roll_inherits_parent_material(self) -> None:
        parent = add_jumbo(self.db, 'J-1', material_type='Liner', basis_weight='125')
        roll = cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('100'), count=1)[0]

        unit = find_unit_by_barcode(self.db, f' {roll.barcode} ')

        self.assertEqual(unit.kind, UnitKind.DIVIDED)
        self.assertEqual(unit.spec.material_type, 'Liner')
        self.assertEqual(unit.spec.basis_weight, Decimal('125'))

    def test_cut_beyond_remaining_length_is_rejected_without_change(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='500')

        with self.assertRaises(InsufficientInventoryError):
            cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('300'), count=2)

        self.assertEqual(get_jumbo_roll(self.db, parent.id).remaining_length, Decimal('500'))

    def test_delete_re_credits_parent(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000')
        rolls = cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('300'), count=2)

        delete_divided_roll(self.db, divided_roll_id=rolls[0].id)

        self.assertEqual(get_jumbo_roll(self.db, parent.id).remaining_length, Decimal('700'))
        with self.assertRaises(NotFoundError):
            get_unit(self.db, kind=UnitKind.DIVIDED, unit_id=rolls[0].id)

    def test_resize_moves_length_between_child_and_parent(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000')
        roll = cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('300'), count=1)[0]

        resize_divided_roll(self.db, divided_roll_id=roll.id, length=Decimal('500'))
        self.assertEqual(get_jumbo_roll(self.db, parent.id).remaining_length, Decimal('500'))

        resize_divided_roll(self.db, divided_roll_id=roll.id, length=Decimal('200'))
        self.assertEqual(get_jumbo_roll(self.db, parent.id).remaining_length, Decimal('800'))

        with self.assertRaises(InsufficientInventoryError):
            resize_divided_roll(self.db, divided_roll_id=roll.id, length=Decimal('1200'))

    def test_shrinking_child_cannot_push_parent_past_total(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000')
        roll = cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('100'), count=1)[0]
        set_remaining_length(self.db, jumbo_roll_id=parent.id, remaining_length='1000')

        with self.assertRaises(ConflictError):
            resize_divided_roll(self.db, divided_roll_id=roll.id, length=Decimal('50'))

        self.assertEqual(get_jumbo_roll(self.db, parent.id).remaining_length, Decimal('1000'))
        self.assertEqual(get_unit(self.db, kind=UnitKind.DIVIDED, unit_id=roll.id).remaining_length, Decimal('100'))

    def test_update_jumbo_roll_shifts_remaining_with_total(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000')
        cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('300'), count=1)

        updated = update_jumbo_roll(
            self.db,
            jumbo_roll_id=parent.id,
            length=Decimal('1200'),
            material_type=' Liner ',
            container_no='CN-7',
        )

        self.assertEqual(updated.total_length, Decimal('1200'))
        self.assertEqual(updated.remaining_length, Decimal('900'))
        self.assertEqual(updated.material_type, 'Liner')
        self.assertEqual(updated.container_no, 'CN-7')

        with self.assertRaises(InsufficientInventoryError):
            update_jumbo_roll(self.db, jumbo_roll_id=parent.id, length=Decimal('200'))
        self.assertEqual(get_jumbo_roll(self.db, parent.id).total_length, Decimal('1200'))

    def test_sold_jumbo_roll_cannot_be_edited_or_deleted(self) -> None:
        order = add_order(self.db, item(1))
        parent = add_jumbo(self.db, 'J-1', length='100')
        consume_unit(
            self.db,
            unit=find_unit_by_barcode(self.db, 'J-1'),
            order_id=order.id,
            customer_name='Acme',
            quantity=Decimal('50'),
        )

        with self.assertRaises(ConflictError):
            update_jumbo_roll(self.db, jumbo_roll_id=parent.id, width=Decimal('90'))
        with self.assertRaises(ConflictError):
            delete_jumbo_roll(self.db, jumbo_roll_id=parent.id)

    def test_jumbo_roll_with_divided_rolls_cannot_be_deleted(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000')
        roll = cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('100'), count=1)[0]

        with self.assertRaises(ConflictError):
            delete_jumbo_roll(self.db, jumbo_roll_id=parent.id)

        delete_divided_roll(self.db, divided_roll_id=roll.id)
        delete_jumbo_roll(self.db, jumbo_roll_id=parent.id)
        with self.assertRaises(NotFoundError):
            get_jumbo_roll(self.db, parent.id)

    def test_bulk_delete_is_all_or_nothing(self) -> None:
        free = add_jumbo(self.db, 'J-1')
        other = add_jumbo(self.db, 'J-2')
        busy = add_jumbo(self.db, 'J-3', length='1000')
        cut_divided_rolls(self.db, jumbo_roll_id=busy.id, length=Decimal('100'), count=1)

        with self.assertRaises(ConflictError) as ctx:
            bulk_delete_jumbo_rolls(self.db, jumbo_roll_ids=[free.id, busy.id])
        self.assertEqual(ctx.exception.context['roll_nos'], [busy.roll_no])
        self.assertEqual(get_jumbo_roll(self.db, free.id).barcode, 'J-1')

        with self.assertRaises(NotFoundError):
            bulk_delete_jumbo_rolls(self.db, jumbo_roll_ids=[free.id, 999])
        with self.assertRaises(ValidationError):
            bulk_delete_jumbo_rolls(self.db, jumbo_roll_ids=[])

        self.assertEqual(bulk_delete_jumbo_rolls(self.db, jumbo_roll_ids=[free.id, other.id, free.id]), 2)
        self.assertEqual(list_units(self.db, kind=UnitKind.JUMBO)['total_items'], 1)

    def test_list_units_pages_do_not_overlap(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000')
        cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('100'), count=4)

        pages = [list_units(self.db, page=number, page_size=2) for number in (1, 2, 3)]
        seen = [(row['kind'], row['id']) for page in pages for row in page['items']]

        self.assertEqual(len(seen), 5)
        self.assertEqual(len(set(seen)), 5)
        divided = next(row for row in pages[0]['items'] + pages[1]['items'] if row['kind'] == 'DIVIDED')
        self.assertEqual(divided['material_type'], 'A')
        self.assertEqual(divided['length'], Decimal('100'))

    def test_set_remaining_length_bounds(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000')

        self.assertEqual(
            set_remaining_length(self.db, jumbo_roll_id=parent.id, remaining_length='250').remaining_length,
            Decimal('250'),
        )
        with self.assertRaises(ValidationError):
            set_remaining_length(self.db, jumbo_roll_id=parent.id, remaining_length='-1')
        with self.assertRaises(ValidationError):
            set_remaining_length(self.db, jumbo_roll_id=parent.id, remaining_length='1001')

    def test_consume_never_drives_remaining_length_negative(self) -> None:
        order = add_order(self.db, item(1))
        add_jumbo(self.db, 'J-1', length='100')
        unit = find_unit_by_barcode(self.db, 'J-1')

        with self.assertRaises(InsufficientInventoryError):
            consume_unit(self.db, unit=unit, order_id=order.id, customer_name='Acme', quantity=Decimal('101'))

        unit = find_unit_by_barcode(self.db, 'J-1')
        self.assertEqual(unit.remaining_length, Decimal('100'))
        self.assertFalse(unit.sold)

    def test_consume_claims_once_and_rejects_other_orders(self) -> None:
        first = add_order(self.db, item(1), order_no='SO-1')
        second = add_order(self.db, item(1), order_no='SO-2', customer_name='Other')
        add_jumbo(self.db, 'J-1', length='100')
        unit = find_unit_by_barcode(self.db, 'J-1')

        claimed = consume_unit(self.db, unit=unit, order_id=first.id, customer_name='Acme', quantity=Decimal('40'))
        self.assertTrue(claimed.sold)
        self.assertEqual(claimed.sold_order_id, first.id)
        self.assertEqual(claimed.remaining_length, Decimal('60'))

        again = consume_unit(self.db, unit=claimed, order_id=first.id, customer_name='Acme', quantity=Decimal('10'))
        self.assertEqual(again.remaining_length, Decimal('50'))

        with self.assertRaises(UnitAlreadySold):
            consume_unit(self.db, unit=again, order_id=second.id, customer_name='Other', quantity=Decimal('10'))

    def test_release_restores_length_and_clears_sale(self) -> None:
        order = add_order(self.db, item(1))
        add_jumbo(self.db, 'J-1', length='100')
        unit = consume_unit(
            self.db,
            unit=find_unit_by_barcode(self.db, 'J-1'),
            order_id=order.id,
            customer_name='Acme',
            quantity=Decimal('100'),
        )

        released = release_unit(
            self.db,
            kind=unit.kind,
            unit_id=unit.id,
            order_id=order.id,
            quantity=Decimal('100'),
            keep_sold=False,
        )

        self.assertFalse(released.sold)
        self.assertIsNone(released.sold_order_id)
        self.assertEqual(released.remaining_length, Decimal('100'))

    def test_sold_divided_roll_cannot_be_deleted(self) -> None:
        order = add_order(self.db, item(1))
        parent = add_jumbo(self.db, 'J-1', length='1000')
        roll = cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('100'), count=1)[0]
        consume_unit(
            self.db,
            unit=get_unit(self.db, kind=UnitKind.DIVIDED, unit_id=roll.id),
            order_id=order.id,
            customer_name='Acme',
            quantity=Decimal('100'),
        )

        with self.assertRaises(ConflictError):
            delete_divided_roll(self.db, divided_roll_id=roll.id)

    def test_inspect_writes_log(self) -> None:
        parent = add_jumbo(self.db, 'J-1')

        inspect_unit(self.db, kind=UnitKind.JUMBO, unit_id=parent.id, principal_id=None)

        self.assertTrue(get_jumbo_roll(self.db, parent.id).inspected)
        logs = list_inspection_logs(self.db, kind=UnitKind.JUMBO)
        self.assertEqual(logs['total_items'], 1)
        self.assertEqual(logs['items'][0]['barcode'], 'J-1')

    def test_list_units_filters_and_pages(self) -> None:
        parent = add_jumbo(self.db, 'J-1', length='1000')
        add_jumbo(self.db, 'J-2')
        cut_divided_rolls(self.db, jumbo_roll_id=parent.id, length=Decimal('100'), count=3)

        everything = list_units(self.db, page_size=2)
        self.assertEqual(everything['total_items'], 5)
        self.assertEqual(everything['total_pages'], 3)
        self.assertEqual(len(everything['items']), 2)

        divided = list_units(self.db, kind=UnitKind.DIVIDED)
        self.assertEqual(divided['total_items'], 3)
        self.assertTrue(all(row['kind'] == 'DIVIDED' for row in divided['items']))

        searched = list_units(self.db, search='J-2')
        self.assertEqual([row['barcode'] for row in searched['items']], ['J-2'])


if __name__ == '__main__':
    unittest.main()
