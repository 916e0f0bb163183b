from gatekeeper.evaluation import EvaluationDetails, EvaluationReason, EvaluationResult
from gatekeeper.impl.events.event_factory import EventFactory, dedup_key
from gatekeeper.impl.events.types import GATE_EXPOSURE_EVENT, LogEvent
from gatekeeper.user import User

timestamp = 10000
event_factory = EventFactory(lambda: timestamp)
user = User('u1', custom_ids={'companyID': 'c1'})


def test_dedup_key_includes_ids_name_and_metadata():
    key = dedup_key(user, 'my_event', {'gate': 'g', 'gateValue': 'true'})
    assert key == 'u1|c1|my_event|g|true'


def test_dedup_key_for_user_without_user_id():
    assert dedup_key(User(custom_ids={'companyID': 'c1'}), 'e', None) == '|c1|e'


def test_dedup_key_is_unaffected_by_evaluation_time():
    first = EvaluationResult(value=True, rule_id='r', evaluation_details=EvaluationDetails(EvaluationReason.NETWORK, 1, 1, 100))
    second = EvaluationResult(value=True, rule_id='r', evaluation_details=EvaluationDetails(EvaluationReason.NETWORK, 1, 1, 200))
    a = event_factory.new_gate_exposure(user, 'g', first)
    b = event_factory.new_gate_exposure(user, 'g', second)
    assert a.dedup_key == b.dedup_key
    assert a.metadata['serverTime'] != b.metadata['serverTime']


def test_gate_exposure():
    result = EvaluationResult(value=False, rule_id='default')
    event = event_factory.new_gate_exposure(user, 'g', result)
    assert event == LogEvent(
        GATE_EXPOSURE_EVENT,
        user={'userID': 'u1', 'customIDs': {'companyID': 'c1'}},
        metadata={'gate': 'g', 'gateValue': 'false', 'ruleID': 'default'},
        secondary_exposures=[],
        time=timestamp,
    )


def test_exposure_copies_secondary_exposures():
    exposures = [{'gate': 'a', 'gateValue': 'true', 'ruleID': 'r'}]
    event = event_factory.new_config_exposure(user, 'c', EvaluationResult(secondary_exposures=exposures))
    assert event.secondary_exposures == exposures
    assert event.secondary_exposures is not exposures


def test_custom_event_without_user():
    event = event_factory.new_custom_event(None, 'e', 'v')
    assert event.user is None
    assert event.dedup_key is None
    assert event.to_dict() == {'eventName': 'e', 'time': timestamp, 'value': 'v'}
