"""
Test suite for sharedref control blocks.

Tests cover:
- Atomic counter operations
- Strong/weak count protocol and reported weak count
- Destroyer dispatch and drop sequence ordering
- Allocation failure cleanup
- Debug-mode double ownership detection

Author: xwest
"""

import unittest
from unittest import mock
import sys
import os

# Add the project root to the Python path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, project_root)

from sharedref.memory.atomics import AtomicCounter
from sharedref.memory.config import configure, reset_configuration, HandleConfiguration
from sharedref.memory.control_block import (
    InplaceControlBlock, PointerControlBlock, CallableDestroyer, DefaultDestroyer,
    DEFAULT_DESTROYER, as_destroyer, create_control_block, get_ownership_registry
)
from sharedref.memory.errors import RefCountError, DoubleOwnershipError
from sharedref.memory.monitor import get_statistics


class Widget:
    def __init__(self, name: str = "widget"):
        self.name = name


class TestAtomicCounter(unittest.TestCase):
    """Test cases for the compare-and-swap counter word."""

    def test_fetch_add_returns_previous(self):
        counter = AtomicCounter(5)
        self.assertEqual(counter.fetch_add(3), 5)
        self.assertEqual(counter.load(), 8)
        self.assertEqual(counter.fetch_sub(8), 8)
        self.assertEqual(counter.load(), 0)

    def test_compare_and_swap(self):
        counter = AtomicCounter(1)
        self.assertFalse(counter.compare_and_swap(2, 3))
        self.assertEqual(counter.load(), 1)
        self.assertTrue(counter.compare_and_swap(1, 3))
        self.assertEqual(int(counter), 3)

    def test_fetch_add_retries_after_concurrent_change(self):
        """fetch_add never loses an update made between its read and swap."""

        class InterleavedCounter(AtomicCounter):
            interleaved = False

            def compare_and_swap(self, expected, desired):
                if not self.interleaved:
                    self.interleaved = True
                    self.store(expected + 10)
                return super().compare_and_swap(expected, desired)

        counter = InterleavedCounter(1)
        self.assertEqual(counter.fetch_add(1), 11)
        self.assertEqual(counter.load(), 12)

    def test_store(self):
        counter = AtomicCounter()
        counter.store(42)
        self.assertEqual(counter.load(), 42)


class TestControlBlockCounts(unittest.TestCase):
    """Test cases for the count protocol."""

    def setUp(self):
        reset_configuration()
        self.destroyed = []
        self.block = PointerControlBlock(Widget(), self.destroyed.append)

    def test_initial_counts(self):
        """A fresh block has one strong reference and reports no observers."""
        self.assertEqual(self.block.strong_count, 1)
        self.assertEqual(self.block.weak_count, 0)
        self.assertFalse(self.block.is_expired)
        self.assertFalse(self.block.is_reclaimed)

    def test_decrement_strong_reports_zero_transition(self):
        self.block.increment_strong()
        self.assertFalse(self.block.decrement_strong())
        self.assertTrue(self.block.decrement_strong())
        self.assertEqual(self.block.strong_count, 0)

    def test_decrement_below_zero_raises(self):
        self.assertTrue(self.block.decrement_strong())
        with self.assertRaises(RefCountError):
            self.block.decrement_strong()
        self.assertEqual(self.block.strong_count, 0)

    def test_try_increment_strong_if_nonzero(self):
        self.assertTrue(self.block.try_increment_strong_if_nonzero())
        self.assertEqual(self.block.strong_count, 2)

        self.block.release_strong()
        self.block.release_strong()
        self.assertFalse(self.block.try_increment_strong_if_nonzero())
        self.assertEqual(self.block.strong_count, 0)

    def test_increment_strong_on_expired_block_raises(self):
        self.block.release_strong()
        with self.assertRaises(RefCountError):
            self.block.increment_strong()

    def test_weak_count_excludes_implicit_unit(self):
        self.block.increment_weak()
        self.block.increment_weak()
        self.assertEqual(self.block.weak_count, 2)

        self.block.release_strong()
        self.assertEqual(self.block.weak_count, 2)
        self.assertFalse(self.block.is_reclaimed)

        self.assertFalse(self.block.release_weak())
        self.assertTrue(self.block.release_weak())
        self.assertTrue(self.block.is_reclaimed)
        self.assertEqual(self.block.weak_count, 0)

    def test_release_strong_destroys_once_then_reclaims(self):
        payload = self.block.payload
        self.assertTrue(self.block.release_strong())

        self.assertEqual(self.destroyed, [payload])
        self.assertTrue(self.block.is_payload_destroyed)
        self.assertIsNone(self.block.payload)
        self.assertTrue(self.block.is_reclaimed)

    def test_weak_observer_defers_reclamation(self):
        self.block.increment_weak()
        self.block.release_strong()

        self.assertEqual(len(self.destroyed), 1)
        self.assertFalse(self.block.is_reclaimed)
        self.assertTrue(self.block.release_weak())
        self.assertTrue(self.block.is_reclaimed)

    def test_increment_weak_on_reclaimed_block_raises(self):
        self.block.release_strong()
        with self.assertRaises(RefCountError):
            self.block.increment_weak()


class TestDestroyers(unittest.TestCase):
    """Test cases for the destruction capability."""

    def test_as_destroyer_normalizes(self):
        self.assertIs(as_destroyer(None), DEFAULT_DESTROYER)
        custom = CallableDestroyer(print)
        self.assertIs(as_destroyer(custom), custom)
        self.assertIsInstance(as_destroyer(lambda obj: None), CallableDestroyer)

    def test_non_callable_destroyer_rejected(self):
        with self.assertRaises(TypeError):
            CallableDestroyer(42)

    def test_inplace_block_uses_default_destroyer(self):
        block = InplaceControlBlock(Widget, ("inline",))
        self.assertIsInstance(block.destroyer, DefaultDestroyer)
        self.assertTrue(block.is_inplace)
        self.assertEqual(block.payload.name, "inline")

        block.release_strong()
        self.assertIsNone(block.payload)
        self.assertTrue(block.is_reclaimed)

    def test_inplace_construction_rejects_custom_destroyer(self):
        with self.assertRaises(ValueError):
            create_control_block(Widget, print, construct=True)

    def test_failing_factory_leaves_no_block(self):
        stats = get_statistics()
        before = stats.snapshot().blocks_created

        def failing_factory():
            raise RuntimeError("construction failed")

        with self.assertRaises(RuntimeError):
            InplaceControlBlock(failing_factory)
        self.assertEqual(stats.snapshot().blocks_created, before)

    def test_raising_destroyer_still_completes_drop(self):
        def exploding(payload):
            raise ValueError("destroyer failed")

        block = PointerControlBlock(Widget(), exploding)
        block.increment_weak()

        with self.assertRaises(ValueError):
            block.release_strong()

        self.assertTrue(block.is_expired)
        self.assertTrue(block.is_payload_destroyed)
        self.assertEqual(block.weak_count, 1)
        self.assertTrue(block.release_weak())
        self.assertTrue(block.is_reclaimed)


class TestAllocationFailure(unittest.TestCase):
    """Test cases for control block allocation failure."""

    def test_pointer_mode_destroys_payload_on_memory_error(self):
        destroyed = []
        widget = Widget()
        stats = get_statistics()
        before = stats.snapshot().blocks_created

        with mock.patch.object(PointerControlBlock, '__init__', side_effect=MemoryError):
            with self.assertRaises(MemoryError):
                create_control_block(widget, destroyed.append)

        self.assertEqual(destroyed, [widget])
        self.assertEqual(stats.snapshot().blocks_created, before)


class TestDoubleOwnership(unittest.TestCase):
    """Test cases for debug-mode double wrap detection."""

    def setUp(self):
        configure(debug_mode=True)

    def tearDown(self):
        reset_configuration()

    def test_second_wrap_is_detected(self):
        widget = Widget()
        first = create_control_block(widget)
        self.assertIs(get_ownership_registry().owner_of(widget), first)

        with self.assertRaises(DoubleOwnershipError) as ctx:
            create_control_block(widget)
        self.assertIs(ctx.exception.payload, widget)
        self.assertIs(ctx.exception.block, first)
        first.release_strong()

    def test_wrap_allowed_after_destruction(self):
        widget = Widget()
        first = create_control_block(widget)
        first.release_strong()
        self.assertIsNone(get_ownership_registry().owner_of(widget))

        second = create_control_block(widget)
        self.assertEqual(second.strong_count, 1)
        second.release_strong()

    def test_failed_creation_releases_registration(self):
        """A block that fails after registering must not stay the owner."""
        destroyed = []
        widget = Widget()

        with mock.patch.object(PointerControlBlock, '_record_created', side_effect=MemoryError):
            with self.assertRaises(MemoryError):
                create_control_block(widget, destroyed.append)

        self.assertEqual(destroyed, [widget])
        self.assertIsNone(get_ownership_registry().owner_of(widget))

        block = create_control_block(widget)
        self.assertIs(get_ownership_registry().owner_of(widget), block)
        block.release_strong()

    def test_detection_is_off_by_default(self):
        reset_configuration()
        widget = Widget()
        first = create_control_block(widget)
        second = create_control_block(widget)
        self.assertIsNot(first, second)
        first.release_strong()
        second.release_strong()

    def test_block_keeps_configuration_it_was_created_with(self):
        block = create_control_block(Widget(), config=HandleConfiguration())
        self.assertFalse(block.config.debug_mode)
        block.release_strong()


class TestLifecycleLogging(unittest.TestCase):
    """Test cases for lifecycle log records."""

    def tearDown(self):
        reset_configuration()

    def test_lifecycle_records_emitted(self):
        configure(log_lifecycle=True)
        with self.assertLogs('sharedref.memory.control_block', level='DEBUG') as logs:
            block = create_control_block(Widget())
            block.release_strong()

        messages = "\n".join(logs.output)
        self.assertIn("Created", messages)
        self.assertIn("Destroying Widget payload", messages)
        self.assertIn("Reclaimed", messages)


if __name__ == '__main__':
    unittest.main()
