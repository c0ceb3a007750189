import unittest
from unittest import TestCase

from squads_client.errors import (
    AlreadyVoted,
    InsufficientPermission,
    NotAMember,
    StaleProposal,
    WrongState,
)
from squads_client.proposal import (
    ProposalEvent,
    Vote,
    activate,
    can_execute,
    cast_vote,
    check_execute,
    effective_state,
    execute,
    is_stale,
    transition,
)
from squads_client.tests.fakes import VOTE_ONLY, key, make_multisig, make_proposal
from squads_client.types import Member, Permission, ProposalState


class TestTransition(TestCase):
    def test_legal_moves(self):
        self.assertEqual(transition(ProposalState.DRAFT, ProposalEvent.ACTIVATE), ProposalState.ACTIVE)
        self.assertEqual(transition(ProposalState.ACTIVE, ProposalEvent.APPROVAL_THRESHOLD), ProposalState.APPROVED)
        self.assertEqual(transition(ProposalState.ACTIVE, ProposalEvent.REJECTION_CUTOFF), ProposalState.REJECTED)
        self.assertEqual(transition(ProposalState.ACTIVE, ProposalEvent.CANCEL_THRESHOLD), ProposalState.CANCELLED)
        self.assertEqual(transition(ProposalState.APPROVED, ProposalEvent.BEGIN_EXECUTION), ProposalState.EXECUTING)
        self.assertEqual(transition(ProposalState.EXECUTING, ProposalEvent.EXECUTE), ProposalState.EXECUTED)
        self.assertEqual(transition(ProposalState.APPROVED, ProposalEvent.EXECUTE), ProposalState.EXECUTED)

    def test_terminal_states_never_move(self):
        for state in (ProposalState.REJECTED, ProposalState.EXECUTED, ProposalState.CANCELLED):
            for event in ProposalEvent:
                with self.subTest(state=state.name, event=event.name):
                    with self.assertRaises(WrongState):
                        transition(state, event)

    def test_no_way_back_to_active(self):
        for state in ProposalState:
            for event in ProposalEvent:
                try:
                    new_state = transition(state, event)
                except WrongState:
                    continue
                if state is not ProposalState.DRAFT:
                    self.assertIsNot(new_state, ProposalState.ACTIVE)


class TestCastVote(TestCase):
    def setUp(self):
        self.a, self.b, self.c = key(1), key(2), key(3)
        self.multisig = make_multisig([self.a, self.b, self.c], threshold=2)
        self.proposal = make_proposal(key(50), transaction_index=1)

    def test_three_members_threshold_two(self):
        after_a = cast_vote(self.proposal, self.multisig, self.a, Vote.APPROVE, now=100)
        self.assertIs(after_a.state, ProposalState.ACTIVE)
        self.assertEqual(after_a.approved, (self.a,))

        after_b = cast_vote(after_a, self.multisig, self.b, Vote.APPROVE, now=200)
        self.assertIs(after_b.state, ProposalState.APPROVED)
        self.assertEqual(after_b.status.timestamp, 200)
        self.assertEqual(after_b.approved, (self.a, self.b))

    def test_input_snapshot_is_unchanged(self):
        cast_vote(self.proposal, self.multisig, self.a, Vote.APPROVE)
        self.assertEqual(self.proposal.approved, ())

    def test_second_vote_fails(self):
        voted = cast_vote(self.proposal, self.multisig, self.a, Vote.REJECT)
        for vote in Vote:
            with self.subTest(vote=vote.name):
                with self.assertRaises(AlreadyVoted):
                    cast_vote(voted, self.multisig, self.a, vote)

    def test_non_member(self):
        with self.assertRaises(NotAMember):
            cast_vote(self.proposal, self.multisig, key(9), Vote.APPROVE)

    def test_member_without_vote_permission(self):
        multisig = make_multisig(
            [Member(self.a, int(Permission.INITIATE | Permission.EXECUTE)), self.b, self.c], threshold=2
        )
        with self.assertRaises(InsufficientPermission):
            cast_vote(self.proposal, multisig, self.a, Vote.APPROVE)

    def test_rejection_cutoff(self):
        # three voters, threshold two: two rejections make approval impossible
        once = cast_vote(self.proposal, self.multisig, self.a, Vote.REJECT)
        self.assertIs(once.state, ProposalState.ACTIVE)
        twice = cast_vote(once, self.multisig, self.b, Vote.REJECT)
        self.assertIs(twice.state, ProposalState.REJECTED)

    def test_cutoff_ignores_non_voters(self):
        multisig = make_multisig([self.a, self.b, Member(self.c, int(Permission.INITIATE))], threshold=2)
        self.assertEqual(multisig.cutoff(), 1)
        rejected = cast_vote(self.proposal, multisig, self.a, Vote.REJECT)
        self.assertIs(rejected.state, ProposalState.REJECTED)

    def test_cancel_threshold(self):
        once = cast_vote(self.proposal, self.multisig, self.a, Vote.CANCEL)
        twice = cast_vote(once, self.multisig, self.b, Vote.CANCEL)
        self.assertIs(once.state, ProposalState.ACTIVE)
        self.assertIs(twice.state, ProposalState.CANCELLED)

    def test_vote_on_non_active_proposal(self):
        for state in (ProposalState.DRAFT, ProposalState.APPROVED, ProposalState.REJECTED, ProposalState.EXECUTED):
            with self.subTest(state=state.name):
                with self.assertRaises(WrongState):
                    cast_vote(make_proposal(key(50), state=state), self.multisig, self.a, Vote.APPROVE)

    def test_stale_proposal(self):
        multisig = make_multisig([self.a, self.b, self.c], threshold=2, stale_transaction_index=1)
        with self.assertRaises(StaleProposal):
            cast_vote(self.proposal, multisig, self.a, Vote.APPROVE)

    def test_check_order(self):
        # membership is checked before the proposal state
        closed = make_proposal(key(50), state=ProposalState.EXECUTED)
        with self.assertRaises(NotAMember):
            cast_vote(closed, self.multisig, key(9), Vote.APPROVE)
        voted = make_proposal(key(50), state=ProposalState.APPROVED, approved=[self.a])
        with self.assertRaises(AlreadyVoted):
            cast_vote(voted, self.multisig, self.a, Vote.APPROVE)


class TestLifecycle(TestCase):
    def setUp(self):
        self.executor = key(1)
        self.multisig = make_multisig([self.executor, Member(key(2), VOTE_ONLY)], threshold=1, time_lock=60)

    def test_activate(self):
        draft = make_proposal(key(50), state=ProposalState.DRAFT)
        self.assertIs(activate(draft, now=5).state, ProposalState.ACTIVE)
        with self.assertRaises(WrongState):
            activate(make_proposal(key(50)))

    def test_execution_respects_time_lock(self):
        approved = make_proposal(key(50), state=ProposalState.APPROVED, timestamp=1000)
        self.assertFalse(can_execute(approved, self.multisig, 1059))
        self.assertTrue(can_execute(approved, self.multisig, 1060))
        self.assertIs(execute(approved, now=1060).state, ProposalState.EXECUTED)

    def test_check_execute(self):
        approved = make_proposal(key(50), state=ProposalState.APPROVED)
        check_execute(approved, self.multisig, self.executor)
        with self.assertRaises(InsufficientPermission):
            check_execute(approved, self.multisig, key(2))
        with self.assertRaises(WrongState):
            check_execute(make_proposal(key(50)), self.multisig, self.executor)

    def test_stale_is_void(self):
        multisig = make_multisig([self.executor], threshold=1, stale_transaction_index=3)
        approved = make_proposal(key(50), transaction_index=3, state=ProposalState.APPROVED)
        executed = make_proposal(key(50), transaction_index=2, state=ProposalState.EXECUTED)
        fresh = make_proposal(key(50), transaction_index=4)

        self.assertTrue(is_stale(approved, multisig))
        self.assertIsNone(effective_state(approved, multisig))
        self.assertIs(effective_state(executed, multisig), ProposalState.EXECUTED)
        self.assertIs(effective_state(fresh, multisig), ProposalState.ACTIVE)
        self.assertFalse(can_execute(approved, multisig, 10**10))
        with self.assertRaises(StaleProposal):
            check_execute(approved, multisig, self.executor)


if __name__ == "__main__":
    unittest.main()
