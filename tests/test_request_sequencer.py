from loan_console.services.queue_events import QueueEventHub, SelectionChanged, SelectionWarning
from loan_console.services.request_sequencer import ResponseGate


def test_latest_ticket_is_accepted():
    gate = ResponseGate()

    ticket = gate.issue()

    assert gate.accept(ticket)
    assert gate.discarded == 0


def test_older_ticket_is_discarded():
    gate = ResponseGate("stats")

    first = gate.issue()
    second = gate.issue()

    assert not gate.accept(first)
    assert gate.accept(second)
    assert gate.discarded == 1
    assert gate.latest == second


def test_event_hub_filters_by_type():
    hub = QueueEventHub()
    warnings = []
    everything = []
    hub.subscribe(warnings.append, SelectionWarning)
    hub.subscribe(everything.append)

    hub.publish(SelectionChanged(selected_ids=(1,), added=(1,)))
    hub.publish(SelectionWarning(loan_id=2, message="not eligible"))

    assert [event.loan_id for event in warnings] == [2]
    assert len(everything) == 2


def test_event_hub_unsubscribe_and_broken_listener():
    hub = QueueEventHub()
    seen = []

    def broken(event):
        raise RuntimeError("render failed")

    hub.subscribe(broken)
    unsubscribe = hub.subscribe(seen.append)
    hub.publish(SelectionChanged(selected_ids=()))
    unsubscribe()
    hub.publish(SelectionChanged(selected_ids=()))

    assert len(seen) == 1
