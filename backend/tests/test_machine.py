"""Tests for the wizard state machine."""

import re
from datetime import date
from decimal import Decimal

import pytest

from conftest import CHILD_ID, LIMITS, SPOUSE_ID, TODAY, FakeTransport, advance_to, fail_step
from signup.core.constants import Endpoint, Gender, Relationship, SubView, WizardStep
from signup.errors import BusinessRuleViolation, TransitionError, TransportError, ValidationError
from signup.submission.orchestrator import EntityOrchestrator
from signup.wizard.machine import WizardStateMachine


def error_fields(outcome):
    return {getattr(e, "field", None) for e in outcome.errors}


def failing_machine(transport, notifier):
    return WizardStateMachine(
        orchestrator=EntityOrchestrator(transport, persist_beneficiaries=False),
        notifier=notifier,
        today=TODAY,
    )


def back_to(machine, target):
    while machine.current_state != target:
        assert machine.back().ok


class TestInitialState:
    def test_starts_on_main_member(self, machine):
        assert machine.current_state == WizardStep.MAIN_MEMBER
        assert machine.sub_view == SubView.NONE
        assert machine.progress_percent == 0

    def test_navigation_flags(self, machine):
        assert machine.can_go_back is False
        assert machine.can_skip is False
        assert machine.can_advance is False

    def test_split_layout_steps(self, machine):
        assert machine.steps == (
            WizardStep.MAIN_MEMBER,
            WizardStep.CHILDREN,
            WizardStep.SPOUSE,
            WizardStep.EXTENDED_FAMILY,
            WizardStep.BENEFICIARY,
            WizardStep.PAYMENT,
            WizardStep.SUMMARY,
            WizardStep.POLICY_DETAILS,
            WizardStep.SUBMITTED,
        )


class TestMainMember:
    async def test_invalid_id_blocks(self, machine, applicant_form):
        applicant_form["id_number"] = "8001015009088"

        outcome = await machine.advance(applicant_form)

        assert outcome.ok is False
        assert machine.current_state == WizardStep.MAIN_MEMBER
        assert "id_number" in error_fields(outcome)
        assert all(isinstance(e, ValidationError) for e in outcome.errors)
        assert machine.session.applicant is None
        assert machine.field_errors

    async def test_invalid_phone_blocks(self, machine, applicant_form):
        applicant_form["phone"] = "12345"

        outcome = await machine.advance(applicant_form)

        assert error_fields(outcome) == {"phone"}

    async def test_missing_fields_reported_together(self, machine):
        outcome = await machine.advance({"name": "", "id_number": "", "phone": "", "address": ""})

        assert {"name", "id_number", "phone", "address", "date_of_birth"} <= error_fields(outcome)

    async def test_invalid_email_blocks(self, machine, applicant_form):
        applicant_form["email"] = "sipho-at-example"

        outcome = await machine.advance(applicant_form)

        assert error_fields(outcome) == {"email"}

    async def test_valid_applicant_advances_and_derives_facts(self, machine, applicant_form):
        outcome = await machine.advance(applicant_form)

        assert outcome.ok
        assert machine.current_state == WizardStep.CHILDREN
        applicant = machine.session.applicant
        assert applicant.date_of_birth == date(1980, 1, 1)
        assert applicant.gender == Gender.MALE
        assert applicant.citizen is True
        assert applicant.phone == "+27821234567"
        assert machine.field_errors == ()

    async def test_back_does_not_revalidate(self, machine, applicant_form):
        await machine.advance(applicant_form)

        outcome = machine.back()

        assert outcome.ok
        assert machine.current_state == WizardStep.MAIN_MEMBER
        # Committed data is reused when advancing without new data
        assert machine.can_advance
        assert (await machine.advance()).state == WizardStep.CHILDREN


class TestNavigation:
    def test_back_refused_on_first_step(self, machine):
        outcome = machine.back()

        assert outcome.ok is False
        assert isinstance(outcome.errors[0], TransitionError)
        assert machine.current_state == WizardStep.MAIN_MEMBER

    def test_skip_refused_on_required_step(self, machine):
        outcome = machine.skip()

        assert outcome.ok is False
        assert isinstance(outcome.errors[0], TransitionError)

    async def test_optional_steps_can_be_skipped(self, machine, applicant_form):
        await machine.advance(applicant_form)

        assert machine.skip().state == WizardStep.SPOUSE
        assert machine.skip().state == WizardStep.EXTENDED_FAMILY
        assert machine.skip().state == WizardStep.BENEFICIARY
        assert machine.can_skip is False

    async def test_optional_steps_advance_without_data(self, machine, applicant_form):
        await machine.advance(applicant_form)

        outcome = await machine.advance()

        assert outcome.ok
        assert machine.current_state == WizardStep.SPOUSE

    async def test_submit_refused_outside_policy_details(self, machine):
        outcome = await machine.submit()

        assert outcome.ok is False
        assert isinstance(outcome.errors[0], TransitionError)

    async def test_progress(self, machine, applicant_form):
        await advance_to(machine, WizardStep.BENEFICIARY, applicant_form)

        assert machine.progress_percent == 50


class TestDependents:
    async def test_dependent_id_fills_date_of_birth(self, machine, applicant_form):
        await advance_to(machine, WizardStep.CHILDREN, applicant_form)

        outcome = machine.add_dependent({"name": "Lwazi", "id_number": CHILD_ID}, "child")

        assert outcome.ok
        assert outcome.index == 0
        assert machine.session.dependents[0].date_of_birth == date(2015, 3, 10)

    async def test_dependent_without_id(self, machine, applicant_form):
        await advance_to(machine, WizardStep.CHILDREN, applicant_form)

        outcome = machine.add_dependent({"name": "Ayanda", "relationship": "child"})

        assert outcome.ok
        assert machine.session.dependents[0].date_of_birth is None

    def test_invalid_dependent_id_rejected(self, machine):
        outcome = machine.add_dependent({"name": "Lwazi", "id_number": "1503105123080"}, "child")

        assert outcome.ok is False
        assert error_fields(outcome) == {"id_number"}
        assert len(machine.session.dependents) == 0

    def test_unknown_relationship_rejected(self, machine):
        outcome = machine.add_dependent({"name": "Lwazi", "relationship": "cousin-in-law"})

        assert error_fields(outcome) == {"relationship"}

    async def test_second_spouse_is_a_cap_violation(self, machine, notifier, applicant_form):
        await advance_to(machine, WizardStep.SPOUSE, applicant_form)
        assert machine.add_dependent({"name": "Nomsa", "id_number": SPOUSE_ID}, "spouse").ok

        outcome = machine.add_dependent({"name": "Zanele"}, "spouse")

        assert outcome.ok is False
        assert isinstance(outcome.errors[0], BusinessRuleViolation)
        assert outcome.errors[0].rule == "relationship_cap"
        assert machine.relationship_counts["spouse"] == 1
        assert notifier.kinds() == ["error"]

    async def test_child_cap(self, machine, applicant_form):
        await advance_to(machine, WizardStep.CHILDREN, applicant_form)
        for i in range(6):
            assert machine.add_dependent({"name": f"Child {i}"}, "child").ok

        assert machine.add_dependent({"name": "Child 7"}, "child").ok is False
        assert machine.relationship_counts["child"] == 6

    async def test_parents_count_towards_extended_family(self, orchestrator, notifier, applicant_form):
        machine = WizardStateMachine(
            orchestrator=orchestrator,
            notifier=notifier,
            limits={**LIMITS, "extended_family": 2},
            today=TODAY,
        )
        await advance_to(machine, WizardStep.EXTENDED_FAMILY, applicant_form)
        assert machine.add_dependent({"name": "Gogo"}, "parent").ok
        assert machine.add_dependent({"name": "Uncle"}, "extended_family").ok

        outcome = machine.add_dependent({"name": "Mkhulu"}, "parent")

        assert outcome.ok is False
        assert machine.relationship_counts == {"spouse": 0, "child": 0, "extended_family": 2}

    async def test_cap_violation_is_not_a_step_error(self, machine, applicant_form):
        await advance_to(machine, WizardStep.SPOUSE, applicant_form)
        machine.add_dependent({"name": "Nomsa"}, "spouse")
        machine.add_dependent({"name": "Zanele"}, "spouse")

        assert machine.current_state == WizardStep.SPOUSE

    async def test_remove_dependent_frees_cap(self, machine, applicant_form):
        await advance_to(machine, WizardStep.SPOUSE, applicant_form)
        machine.add_dependent({"name": "Nomsa"}, "spouse")

        assert machine.remove_dependent(0).ok
        assert machine.add_dependent({"name": "Zanele"}, "spouse").ok

    def test_remove_bad_index(self, machine):
        outcome = machine.remove_dependent(3)

        assert outcome.ok is False
        assert error_fields(outcome) == {"index"}

    def test_add_refused_on_main_member(self, machine):
        outcome = machine.add_dependent({"name": "Lwazi", "id_number": CHILD_ID}, "child")

        assert outcome.ok is False
        assert isinstance(outcome.errors[0], TransitionError)
        assert len(machine.session.dependents) == 0

    @pytest.mark.parametrize(("target", "relationship"), [
        (WizardStep.CHILDREN, "spouse"),
        (WizardStep.SPOUSE, "child"),
        (WizardStep.EXTENDED_FAMILY, "child"),
        (WizardStep.BENEFICIARY, "parent"),
    ])
    async def test_relationship_must_match_step(self, machine, applicant_form, target, relationship):
        await advance_to(machine, target, applicant_form)

        outcome = machine.add_dependent({"name": "Nomsa"}, relationship)

        assert isinstance(outcome.errors[0], TransitionError)
        assert len(machine.session.dependents) == 0
        assert machine.current_state == target


class TestSubViews:
    async def test_sub_view_supplies_relationship_and_closes(self, machine, applicant_form):
        await machine.advance(applicant_form)

        assert machine.open_sub_view(SubView.ADD_CHILD).ok
        outcome = machine.add_dependent({"name": "Lwazi"})

        assert outcome.ok
        assert machine.session.dependents[0].relationship == Relationship.CHILD
        assert machine.sub_view == SubView.NONE

    async def test_sub_view_must_belong_to_step(self, machine, applicant_form):
        await machine.advance(applicant_form)

        outcome = machine.open_sub_view(SubView.ADD_SPOUSE)

        assert outcome.ok is False
        assert machine.sub_view == SubView.NONE

    async def test_only_one_sub_view_at_a_time(self, orchestrator, notifier, applicant_form):
        machine = WizardStateMachine(orchestrator=orchestrator, notifier=notifier, layout="combined", today=TODAY)
        await machine.advance(applicant_form)

        machine.open_sub_view(SubView.ADD_CHILD)
        machine.open_sub_view(SubView.ADD_SPOUSE)

        assert machine.sub_view == SubView.ADD_SPOUSE
        assert machine.close_sub_view().ok
        assert machine.sub_view == SubView.NONE

    async def test_moving_closes_sub_view(self, machine, applicant_form):
        await machine.advance(applicant_form)
        machine.open_sub_view(SubView.ADD_CHILD)

        machine.skip()

        assert machine.sub_view == SubView.NONE


class TestBeneficiaries:
    async def test_zero_beneficiaries_blocks(self, machine, applicant_form):
        await advance_to(machine, WizardStep.BENEFICIARY, applicant_form)

        outcome = await machine.advance()

        assert outcome.ok is False
        assert outcome.errors[0].rule == "beneficiary_required"
        assert machine.current_state == WizardStep.BENEFICIARY

    async def test_eighty_five_percent_blocks(self, machine, applicant_form):
        await advance_to(machine, WizardStep.BENEFICIARY, applicant_form)
        machine.add_beneficiary({"name": "Nomsa", "relationship": "spouse", "percentage": 85})

        outcome = await machine.advance()

        assert outcome.ok is False
        assert outcome.errors[0].rule == "percentage_sum"
        assert machine.beneficiary_percentage_total == Decimal("85")
        assert machine.current_state == WizardStep.BENEFICIARY

    async def test_one_beneficiary_at_one_hundred_moves_to_payment(self, machine, applicant_form):
        await advance_to(machine, WizardStep.BENEFICIARY, applicant_form)
        machine.add_beneficiary({"name": "Nomsa", "relationship": "spouse", "percentage": 100})

        outcome = await machine.advance()

        assert outcome.ok
        assert machine.current_state == WizardStep.PAYMENT

    async def test_split_percentages(self, machine, applicant_form):
        await advance_to(machine, WizardStep.BENEFICIARY, applicant_form)
        machine.add_beneficiary({"name": "Nomsa", "relationship": "spouse", "percentage": "60"})
        machine.add_beneficiary({"name": "Lwazi", "relationship": "son", "percentage": "40"})

        assert (await machine.advance()).ok

    @pytest.mark.parametrize("percentage", [0, -5, 150, "abc", None])
    async def test_percentage_out_of_range_rejected(self, machine, applicant_form, percentage):
        await advance_to(machine, WizardStep.BENEFICIARY, applicant_form)

        outcome = machine.add_beneficiary({"name": "Nomsa", "relationship": "spouse", "percentage": percentage})

        assert error_fields(outcome) == {"percentage"}
        assert len(machine.session.beneficiaries) == 0

    async def test_beneficiary_phone_is_normalized(self, machine, applicant_form):
        await advance_to(machine, WizardStep.BENEFICIARY, applicant_form)

        machine.add_beneficiary({
            "name": "Nomsa", "relationship": "spouse", "percentage": 100, "phone": "083 555 0124",
        })

        assert machine.session.beneficiaries[0].phone == "+27835550124"

    async def test_add_refused_outside_beneficiary_step(self, machine, applicant_form):
        await advance_to(machine, WizardStep.CHILDREN, applicant_form)

        outcome = machine.add_beneficiary({"name": "Nomsa", "relationship": "spouse", "percentage": 100})

        assert outcome.ok is False
        assert isinstance(outcome.errors[0], TransitionError)
        assert len(machine.session.beneficiaries) == 0


class TestPayment:
    async def test_incomplete_bank_details_block(self, machine, applicant_form, bank_form):
        await advance_to(machine, WizardStep.PAYMENT, applicant_form)
        del bank_form["branch_code"]

        outcome = await machine.advance(bank_form)

        assert outcome.ok is False
        assert error_fields(outcome) == {"branch_code"}
        assert machine.session.payment is None

    async def test_bank_details_advance(self, machine, applicant_form, bank_form):
        await advance_to(machine, WizardStep.PAYMENT, applicant_form)

        outcome = await machine.advance(bank_form)

        assert outcome.ok
        assert machine.current_state == WizardStep.SUMMARY
        assert machine.session.payment.debit_day == 25

    async def test_sassa_ignores_bank_fields(self, machine, applicant_form, bank_form):
        await advance_to(machine, WizardStep.PAYMENT, applicant_form)

        outcome = await machine.advance({**bank_form, "method": "sassa", "grant_number": "123456789012"})

        assert outcome.ok
        assert machine.session.payment.method == "sassa"
        assert not hasattr(machine.session.payment, "account_number")

    async def test_unknown_method(self, machine, applicant_form):
        await advance_to(machine, WizardStep.PAYMENT, applicant_form)

        outcome = await machine.advance({"method": "crypto"})

        assert error_fields(outcome) == {"method"}


class TestPolicyDetails:
    async def test_missing_frequency_blocks(self, machine, applicant_form, policy_form):
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        del policy_form["frequency"]

        outcome = await machine.advance(policy_form)

        assert error_fields(outcome) == {"frequency"}
        assert machine.current_state == WizardStep.POLICY_DETAILS

    async def test_zero_premium_blocks(self, machine, applicant_form, policy_form):
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        policy_form["premium"] = 0

        outcome = await machine.advance(policy_form)

        assert error_fields(outcome) == {"premium"}

    async def test_unknown_policy_type_and_agent_block(self, machine, applicant_form, policy_form, transport):
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        policy_form.update(policy_type_id=99, agent_id=42)

        outcome = await machine.advance(policy_form)

        assert error_fields(outcome) == {"policy_type_id", "agent_id"}
        assert transport.calls == []

    def test_quote_premium(self, machine):
        assert machine.quote_premium(1, Decimal("20000")) == Decimal("300.00")
        assert machine.quote_premium(1) == Decimal("150.00")
        assert machine.quote_premium(2, Decimal("10000")) == Decimal("250.00")
        assert machine.quote_premium(99) is None


class TestSubmission:
    async def test_full_flow_creates_nine_records(self, machine, transport, notifier, applicant_form, bank_form, policy_form):
        await machine.advance(applicant_form)
        machine.add_dependent({"name": "Lwazi", "id_number": CHILD_ID}, "child")
        machine.add_dependent({"name": "Ayanda"}, "child")
        machine.skip()
        machine.add_dependent({"name": "Nomsa", "id_number": SPOUSE_ID}, "spouse")
        await advance_to(machine, WizardStep.PAYMENT, applicant_form)
        await machine.advance(bank_form)
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)

        outcome = await machine.submit(policy_form)

        assert outcome.ok
        assert machine.current_state == WizardStep.SUBMITTED
        assert outcome.orchestration.succeeded
        assert len(transport.calls) == 9
        assert notifier.kinds() == ["info"]
        assert machine.progress_percent == 100
        assert machine.can_go_back is False

    async def test_submitted_is_terminal(self, machine, applicant_form, policy_form):
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)

        assert isinstance((await machine.advance()).errors[0], TransitionError)
        assert machine.back().ok is False
        assert machine.add_dependent({"name": "Late"}, "child").ok is False

    async def test_failed_submission_stays_on_policy_details(self, notifier, applicant_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("policy"))
        machine = WizardStateMachine(
            orchestrator=EntityOrchestrator(transport, persist_beneficiaries=False),
            notifier=notifier,
            today=TODAY,
        )
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)

        outcome = await machine.submit(policy_form)

        assert outcome.ok is False
        assert machine.current_state == WizardStep.POLICY_DETAILS
        assert isinstance(outcome.errors[0], TransportError)
        assert outcome.orchestration.failed_step == "policy"
        assert notifier.kinds() == ["error"]
        assert "client" in machine.session.created_ids

    async def test_retry_resumes_without_recreating_client(self, notifier, applicant_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("policy"))
        machine = WizardStateMachine(
            orchestrator=EntityOrchestrator(transport, persist_beneficiaries=False),
            notifier=notifier,
            today=TODAY,
        )
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)

        transport.fail_when = None
        outcome = await machine.submit()

        assert outcome.ok
        assert machine.current_state == WizardStep.SUBMITTED
        assert len(transport.calls_to(Endpoint.CLIENTS)) == 1

    async def test_no_orchestrator(self, notifier, applicant_form, policy_form):
        machine = WizardStateMachine(notifier=notifier, today=TODAY)
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)

        outcome = await machine.submit(policy_form)

        assert isinstance(outcome.errors[0], TransitionError)
        assert machine.current_state == WizardStep.POLICY_DETAILS
        assert machine.session.policy is None

    async def test_policy_number_is_kept_across_retries(self, notifier, applicant_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("policy"))
        machine = failing_machine(transport, notifier)
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)
        policy_number = machine.session.policy.policy_number

        transport.fail_when = None
        outcome = await machine.submit(policy_form)

        assert outcome.ok
        assert re.fullmatch(r"CS-2026-\d{6}", policy_number)
        attempts = transport.calls_to(Endpoint.POLICIES)
        assert [c.body["policyNumber"] for c in attempts] == [policy_number, policy_number]
        assert attempts[0].body == attempts[1].body
        assert attempts[0].idempotency_key == attempts[1].idempotency_key

    async def test_notifier_failure_does_not_break_submission(self, transport, applicant_form, policy_form):
        class BrokenNotifier:
            def notify(self, kind, title, description):
                raise RuntimeError("toast service down")

        machine = WizardStateMachine(
            orchestrator=EntityOrchestrator(transport, persist_beneficiaries=False),
            notifier=BrokenNotifier(),
            today=TODAY,
        )
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)

        assert (await machine.submit(policy_form)).ok


class TestEditsAfterFailedSubmission:
    async def test_created_dependent_cannot_be_removed(self, notifier, applicant_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("dependent[1]"))
        machine = failing_machine(transport, notifier)
        await advance_to(machine, WizardStep.CHILDREN, applicant_form)
        machine.add_dependent({"name": "Lwazi"}, "child")
        machine.add_dependent({"name": "Ayanda"}, "child")
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)

        outcome = machine.remove_dependent(0)

        assert outcome.ok is False
        assert outcome.errors[0].rule == "record_locked"
        assert len(machine.session.dependents) == 2

    async def test_remove_uncreated_dependent_then_resubmit(self, notifier, applicant_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("dependent[0]"))
        machine = failing_machine(transport, notifier)
        await advance_to(machine, WizardStep.CHILDREN, applicant_form)
        machine.add_dependent({"name": "Lwazi"}, "child")
        machine.add_dependent({"name": "Ayanda"}, "child")
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)
        ayanda_id = machine.session.created_ids["dependent[1]"]

        assert machine.remove_dependent(0).ok
        transport.fail_when = None
        outcome = await machine.submit()

        assert outcome.ok
        # Ayanda now sits at index 0 and keeps the ID from the first run
        assert len(transport.calls_to(Endpoint.DEPENDENTS)) == 2
        assert machine.session.created_ids["dependent[0]"] == ayanda_id
        assert "dependent[1]" not in machine.session.created_ids
        links = transport.calls_to(Endpoint.POLICY_DEPENDENTS)
        assert [c.body["dependentId"] for c in links] == [ayanda_id]

    async def test_add_dependent_then_resubmit(self, notifier, applicant_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("policy"))
        machine = failing_machine(transport, notifier)
        await advance_to(machine, WizardStep.CHILDREN, applicant_form)
        machine.add_dependent({"name": "Lwazi"}, "child")
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)
        lwazi_id = machine.session.created_ids["dependent[0]"]

        back_to(machine, WizardStep.CHILDREN)
        assert machine.add_dependent({"name": "Ayanda"}, "child").ok
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        transport.fail_when = None
        outcome = await machine.submit()

        assert outcome.ok
        assert len(transport.calls_to(Endpoint.CLIENTS)) == 1
        assert len(transport.calls_to(Endpoint.DEPENDENTS)) == 2
        created = machine.session.created_ids
        assert created["dependent[0]"] == lwazi_id
        links = transport.calls_to(Endpoint.POLICY_DEPENDENTS)
        assert [c.body["dependentId"] for c in links] == [lwazi_id, created["dependent[1]"]]

    async def test_main_member_is_locked_once_created(self, notifier, applicant_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("policy"))
        machine = failing_machine(transport, notifier)
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)
        back_to(machine, WizardStep.MAIN_MEMBER)

        outcome = await machine.advance({**applicant_form, "name": "Sipho Mthembu"})

        assert outcome.ok is False
        assert outcome.errors[0].rule == "record_locked"
        assert machine.session.applicant.name == "Sipho Ndlovu"
        assert machine.current_state == WizardStep.MAIN_MEMBER
        # Unchanged data still moves on
        assert (await machine.advance(applicant_form)).state == WizardStep.CHILDREN

    async def test_payment_is_locked_once_created(self, notifier, applicant_form, bank_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("policy"))
        machine = failing_machine(transport, notifier)
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)
        back_to(machine, WizardStep.PAYMENT)

        outcome = await machine.advance(bank_form)

        assert outcome.ok is False
        assert outcome.errors[0].rule == "record_locked"
        assert machine.session.payment.method == "sassa"

    async def test_policy_is_locked_once_created(self, notifier, applicant_form, policy_form):
        transport = FakeTransport(fail_when=fail_step("policy_dependent[0]"))
        machine = failing_machine(transport, notifier)
        await advance_to(machine, WizardStep.CHILDREN, applicant_form)
        machine.add_dependent({"name": "Lwazi"}, "child")
        await advance_to(machine, WizardStep.POLICY_DETAILS, applicant_form)
        await machine.submit(policy_form)
        calls_before = len(transport.calls)

        outcome = await machine.submit({**policy_form, "premium": "200.00"})

        assert outcome.ok is False
        assert outcome.errors[0].rule == "record_locked"
        assert len(transport.calls) == calls_before
        assert machine.session.policy.premium == Decimal("150.00")

        transport.fail_when = None
        assert (await machine.submit(policy_form)).ok
        assert len(transport.calls_to(Endpoint.POLICIES)) == 1


class TestCombinedLayout:
    async def test_family_step_replaces_children_and_spouse(self, orchestrator, notifier, applicant_form):
        machine = WizardStateMachine(orchestrator=orchestrator, notifier=notifier, layout="combined", today=TODAY)

        assert WizardStep.CHILDREN not in machine.steps
        assert WizardStep.SPOUSE not in machine.steps

        await machine.advance(applicant_form)
        assert machine.current_state == WizardStep.FAMILY
        assert machine.open_sub_view(SubView.ADD_SPOUSE).ok
        assert machine.add_dependent({"name": "Nomsa"}).ok

        assert machine.skip().state == WizardStep.EXTENDED_FAMILY

    def test_unknown_layout(self, orchestrator):
        with pytest.raises(ValueError):
            WizardStateMachine(orchestrator=orchestrator, layout="sideways")
