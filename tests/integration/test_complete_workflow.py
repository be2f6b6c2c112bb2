"""Integration tests for the complete shielded pool lifecycle."""

import pytest

from zkpool.core.controller import Controller
from zkpool.core.tree_mirror import TreeMirror
from zkpool.crypto.encryption import generate_keypair
from zkpool.storage.database import DatabaseManager
from zkpool.exceptions import NullifierReuseError, UndercollateralizedError

RECIPIENT = "0x" + "bb" * 20
RELAYER = "0x" + "cc" * 20


class TestCompletePoolWorkflow:
    """Tests for complete deposit/withdraw/mint/burn cycles."""

    def test_full_lifecycle(self, controller, chain, keypair):
        """Deposit, withdraw, mint with a relayer fee and burn, one note at a time."""
        private_key, public_key = keypair
        start_balance = chain.underlying[chain.sender]

        # Step 1: Deposit 100
        result = controller.deposit(controller.new_account(), public_key, 100)
        controller.submit(result)
        account = result.account
        assert (account.amount, account.debt) == (100, 0)
        assert chain.pool_underlying == 100
        assert chain.underlying[chain.sender] == start_balance - 100

        # Step 2: Withdraw 20 to a third party
        result = controller.withdraw(account, public_key, 20, RECIPIENT)
        controller.submit(result)
        account = result.account
        assert account.amount == 80
        assert chain.underlying[RECIPIENT] == 20
        assert chain.pool_underlying == 80

        # Step 3: Mint 16 debt to ourselves, 3 of it to the relayer
        result = controller.mint(account, public_key, 16, chain.sender, relayer=RELAYER, fee=3)
        controller.submit(result)
        account = result.account
        assert (account.amount, account.debt) == (80, 16)
        assert chain.tokens[chain.sender] == 13
        assert chain.tokens[RELAYER] == 3

        # Step 4: Burn what we hold
        result = controller.burn(account, public_key, 13)
        controller.submit(result)
        account = result.account
        assert (account.amount, account.debt) == (80, 3)
        assert chain.tokens[chain.sender] == 0

        # Only the latest note is spendable
        assert controller.recover_accounts(private_key) == [account]
        assert chain.account_count() == 4
        assert controller.state().local_root == hex(controller.tree.local_root)

    def test_spent_note_cannot_be_reused(self, controller, keypair):
        public_key = keypair[1]
        first = controller.deposit(controller.new_account(), public_key, 50)
        controller.submit(first)
        controller.submit(controller.withdraw(first.account, public_key, 10, RECIPIENT))

        with pytest.raises(NullifierReuseError):
            controller.withdraw(first.account, public_key, 10, RECIPIENT)

    def test_cannot_mint_past_collateral(self, controller, keypair):
        public_key = keypair[1]
        result = controller.deposit(controller.new_account(), public_key, 10)
        controller.submit(result)

        with pytest.raises(UndercollateralizedError):
            controller.mint(result.account, public_key, 11, RECIPIENT)
        # Exactly at the limit is fine
        controller.submit(controller.mint(result.account, public_key, 10, RECIPIENT))

    def test_rate_change_limits_mint(self, controller, chain, keypair):
        public_key = keypair[1]
        result = controller.deposit(controller.new_account(), public_key, 10)
        controller.submit(result)
        chain.upu = 2 * 10 ** 18

        with pytest.raises(UndercollateralizedError):
            controller.mint(result.account, public_key, 6, RECIPIENT)
        controller.submit(controller.mint(result.account, public_key, 5, RECIPIENT))


class TestLazyTreeWorkflow:
    """Tests against a contract whose accepted root lags its leaves."""

    @pytest.fixture
    def lazy_controller(self, lazy_chain, backend, settings, hasher):
        ctrl = Controller(lazy_chain, backend, settings=settings, hasher=hasher)
        yield ctrl
        ctrl.close()

    def test_interleaved_users(self, lazy_controller, lazy_chain, hasher, keypair):
        """Other users' leaves are folded in by the next tree update."""
        public_key = keypair[1]

        result = lazy_controller.deposit(lazy_controller.new_account(), public_key, 40)
        assert result.tree_update is None
        lazy_controller.submit(result)
        assert lazy_chain.committed_count == 0

        for i in range(3):
            lazy_chain.lazy_insert(hasher.hash(1000 + i), hasher.hash(2000 + i))

        result = lazy_controller.withdraw(result.account, public_key, 15, RECIPIENT)
        assert result.tree_update is not None
        assert result.tree_update.args.start_index == 0
        assert len(result.tree_update.args.leaves) == 4
        lazy_controller.submit(result)

        assert lazy_chain.committed_count == 4
        assert lazy_chain.account_count() == 5
        assert lazy_chain.underlying[RECIPIENT] == 15

    def test_two_controllers_share_a_chain(self, lazy_chain, backend, settings, hasher):
        """Independent clients each catch up with the other's leaves."""
        alice_key, alice_pub = generate_keypair()
        bob_key, bob_pub = generate_keypair()
        alice = Controller(lazy_chain, backend, settings=settings, hasher=hasher)
        bob = Controller(lazy_chain, backend, settings=settings, hasher=hasher)
        try:
            a1 = alice.deposit(alice.new_account(), alice_pub, 30)
            alice.submit(a1)
            b1 = bob.deposit(bob.new_account(), bob_pub, 20)
            bob.submit(b1)

            a2 = alice.withdraw(a1.account, alice_pub, 5, RECIPIENT)
            alice.submit(a2)
            b2 = bob.withdraw(b1.account, bob_pub, 5, RECIPIENT)
            bob.submit(b2)

            assert alice.recover_accounts(alice_key) == [a2.account]
            assert bob.recover_accounts(bob_key) == [b2.account]
            assert alice.tree.local_root == bob.tree.local_root
        finally:
            alice.close()
            bob.close()


class TestRecoveryWorkflow:
    """Tests for rebuilding a wallet from chain events."""

    def test_restart_with_store(self, chain, backend, settings, hasher, keypair, temp_db):
        private_key, public_key = keypair
        store = DatabaseManager(temp_db)
        store.create_tables()

        with Controller(chain, backend, settings=settings, hasher=hasher, store=store) as first:
            result = first.deposit(first.new_account(), public_key, 25)
            first.submit(result)
            result = first.mint(result.account, public_key, 5, RECIPIENT)
            first.submit(result)
            latest = result.account
            assert first.recover_accounts(private_key) == [latest]

        assert [a.commitment for a in store.unspent_accounts()] == [hex(latest.commitment)]

        tree = TreeMirror(settings.merkle_tree_height, hasher=hasher, store=store)
        assert tree.account_count == 2

        with Controller(chain, backend, settings=settings, tree=tree, store=store) as second:
            assert second.recover_accounts(private_key) == [latest]
            result = second.withdraw(latest, public_key, 20, RECIPIENT)
            second.submit(result)
            assert second.recover_accounts(private_key) == [result.account]

        unspent = store.unspent_accounts()
        assert [a.commitment for a in unspent] == [hex(result.account.commitment)]
        assert store.leaf_count() == 3
