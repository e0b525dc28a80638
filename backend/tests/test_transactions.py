"""
Unit tests for emulated transactions and compensation.
"""
from speechtasks.exceptions import Conflict, StoreError
from speechtasks.transactions import TransactionCoordinator


class TestRunTransaction:
    """Tests for TransactionCoordinator.run_transaction."""

    def test_success_commits(self, store, coordinator):
        result = coordinator.run_transaction(lambda tx: store.insert('tasks', {'id': 't1'}))

        assert result['success'] is True
        assert result['data'] == {'id': 't1'}
        assert store.transactions == [['tx-1', 'commit']]

    def test_failure_runs_compensations_in_reverse(self, store, coordinator):
        order = []

        def body(tx):
            tx.step('first', lambda: order.append('do-1'), lambda _: order.append('undo-1'))
            tx.step('second', lambda: order.append('do-2'), lambda _: order.append('undo-2'))
            raise Conflict('lost the race')

        result = coordinator.run_transaction(body)

        assert result['success'] is False
        assert result['code'] == 'Conflict'
        assert result['error'] == 'lost the race'
        assert order == ['do-1', 'do-2', 'undo-2', 'undo-1']
        assert store.transactions == [['tx-1', 'rollback']]

    def test_failed_step_has_no_compensation(self, store, coordinator):
        undone = []

        def body(tx):
            tx.step('ok', lambda: store.insert('tasks', {'id': 't1'}), lambda row: undone.append(row['id']))
            tx.step('dup', lambda: store.insert('tasks', {'id': 't1'}), lambda row: undone.append('dup'))

        result = coordinator.run_transaction(body)

        assert result['success'] is False
        assert undone == ['t1']

    def test_failing_compensation_does_not_stop_others(self, store, coordinator):
        undone = []

        def explode(_):
            raise StoreError('cannot undo')

        def body(tx):
            tx.step('a', lambda: 'a', lambda _: undone.append('a'))
            tx.step('b', lambda: 'b', explode)
            raise StoreError('boom')

        result = coordinator.run_transaction(body)

        assert result['success'] is False
        assert result['error'] == 'boom'
        assert undone == ['a']

    def test_begin_failure_is_reported(self, store):
        store.fail('begin', '*')
        result = TransactionCoordinator(store).run_transaction(lambda tx: 'never')

        assert result['success'] is False
        assert result['code'] == 'StoreError'

    def test_commit_failure_compensates(self, store, coordinator):
        store.fail('commit', '*')

        result = coordinator.run_transaction(
            lambda tx: tx.step('insert', lambda: store.insert('tasks', {'id': 't1'}),
                               lambda row: store.delete('tasks', row['id']))
        )

        assert result['success'] is False
        assert store.get('tasks', 't1') is None

    def test_unexpected_exception_becomes_internal_error(self, coordinator):
        def body(tx):
            raise KeyError('missing')

        result = coordinator.run_transaction(body)

        assert result['success'] is False
        assert result['code'] == 'InternalError'
