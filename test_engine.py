import json
import sys
import xml.etree.ElementTree as ET

import pytest

from bpmai_convert.engine import (
    BPMN_NS,
    BPMNDI_NS,
    CommandEngine,
    SignavioBpmnEngine,
    TransformationError,
    create_engine,
    xml_id,
)
from conftest import BPMN20_STENCILSET, flow, linear_process, shape


NS = {"bpmn": BPMN_NS, "bpmndi": BPMNDI_NS}


def convert(model):
    xml = SignavioBpmnEngine().transform(json.dumps(model))
    return ET.fromstring(xml.encode("utf-8"))


def diagram(*shapes):
    return {"resourceId": "sid-diagram", "stencilset": BPMN20_STENCILSET, "childShapes": list(shapes)}


def test_linear_process():
    root = convert(linear_process(("Check order", "Ship order")))

    process = root.find("bpmn:process", NS)
    tasks = process.findall("bpmn:task", NS)
    assert [t.get("name") for t in tasks] == ["Check order", "Ship order"]
    assert process.find("bpmn:startEvent", NS).get("id") == "sid-start"
    assert process.find("bpmn:endEvent", NS).get("id") == "sid-end"

    flows = {f.get("id"): (f.get("sourceRef"), f.get("targetRef")) for f in process.findall("bpmn:sequenceFlow", NS)}
    assert flows == {
        "sid-flow-0": ("sid-start", "sid-task-0"),
        "sid-flow-1": ("sid-task-0", "sid-task-1"),
        "sid-flow-2": ("sid-task-1", "sid-end"),
    }


def test_output_has_declaration_and_diagram():
    xml = SignavioBpmnEngine().transform(json.dumps(linear_process(("Only",))))
    assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')

    root = ET.fromstring(xml.encode("utf-8"))
    shapes = root.findall(".//bpmndi:BPMNShape", NS)
    edges = root.findall(".//bpmndi:BPMNEdge", NS)
    assert {s.get("bpmnElement") for s in shapes} == {"sid-start", "sid-task-0", "sid-end"}
    assert len(edges) == 2


def test_task_types_and_event_definitions():
    root = convert(diagram(
        shape("sid-a", "Task", name="Approve", tasktype="User"),
        shape("sid-b", "Task", name="Notify", tasktype="Send"),
        shape("sid-c", "StartMessageEvent"),
        shape("sid-d", "IntermediateTimerEvent"),
        shape("sid-e", "IntermediateMessageEventThrowing"),
        shape("sid-f", "EndTerminateEvent"),
        shape("sid-g", "Exclusive_Databased_Gateway"),
    ))
    process = root.find("bpmn:process", NS)

    assert process.find("bpmn:userTask", NS).get("name") == "Approve"
    assert process.find("bpmn:sendTask", NS).get("name") == "Notify"
    assert process.find("bpmn:startEvent/bpmn:messageEventDefinition", NS) is not None
    assert process.find("bpmn:intermediateCatchEvent/bpmn:timerEventDefinition", NS) is not None
    assert process.find("bpmn:intermediateThrowEvent/bpmn:messageEventDefinition", NS) is not None
    assert process.find("bpmn:endEvent/bpmn:terminateEventDefinition", NS) is not None
    assert process.find("bpmn:exclusiveGateway", NS) is not None


def test_condition_expression_and_documentation():
    root = convert(diagram(
        shape("sid-gw", "Exclusive_Databased_Gateway", outgoing=["sid-yes"]),
        shape("sid-task", "Task", name="Pay", documentation="Pay the invoice"),
        flow("sid-yes", "sid-task", name="approved", conditionexpression="amount < 100"),
    ))
    sequence_flow = root.find(".//bpmn:sequenceFlow", NS)

    assert sequence_flow.get("name") == "approved"
    assert sequence_flow.find("bpmn:conditionExpression", NS).text == "amount < 100"
    assert root.find(".//bpmn:task/bpmn:documentation", NS).text == "Pay the invoice"


def test_pools_and_lanes():
    task = shape("sid-task", "Task", name="Review", x=50, y=10)
    lane = shape("sid-lane", "Lane", name="Clerk", x=30, y=0, width=500, height=100, children=[task])
    pool = shape("sid-pool", "Pool", name="Insurer", x=0, y=0, width=600, height=100, children=[lane])
    root = convert(diagram(pool))

    participant = root.find("bpmn:collaboration/bpmn:participant", NS)
    assert participant.get("name") == "Insurer"
    process = root.find("bpmn:process", NS)
    assert participant.get("processRef") == process.get("id")
    assert process.find("bpmn:laneSet/bpmn:lane", NS).get("name") == "Clerk"
    assert process.find("bpmn:laneSet/bpmn:lane/bpmn:flowNodeRef", NS).text == "sid-task"
    assert process.find("bpmn:task", NS).get("name") == "Review"

    bounds = root.find(".//bpmndi:BPMNShape[@bpmnElement='sid-task']/{http://www.omg.org/spec/DD/20100524/DC}Bounds", NS)
    assert (bounds.get("x"), bounds.get("y")) == ("80.0", "10.0")


def test_message_flow_between_pools():
    sender = shape("sid-send", "Task", name="Send offer", outgoing=["sid-msg"])
    receiver = shape("sid-recv", "Task", name="Receive offer")
    message = shape("sid-msg", "MessageFlow", outgoing=["sid-recv"])
    message["target"] = {"resourceId": "sid-recv"}
    root = convert(diagram(
        shape("sid-p1", "Pool", name="Seller", children=[sender]),
        shape("sid-p2", "Pool", name="Buyer", y=200, children=[receiver]),
        message,
    ))

    message_flow = root.find("bpmn:collaboration/bpmn:messageFlow", NS)
    assert (message_flow.get("sourceRef"), message_flow.get("targetRef")) == ("sid-send", "sid-recv")
    assert len(root.findall("bpmn:process", NS)) == 2


def test_subprocess_children_are_nested():
    inner = shape("sid-inner", "Task", name="Inner step")
    root = convert(diagram(shape("sid-sub", "Subprocess", name="Handle claim", children=[inner])))

    sub_process = root.find("bpmn:process/bpmn:subProcess", NS)
    assert sub_process.get("name") == "Handle claim"
    assert sub_process.find("bpmn:task", NS).get("name") == "Inner step"
    assert root.find("bpmn:process/bpmn:task", NS) is None


def test_dangling_flows_are_dropped():
    root = convert(diagram(
        shape("sid-task", "Task", name="Alone", outgoing=["sid-flow"]),
        flow("sid-flow", "sid-nowhere"),
    ))
    assert root.find(".//bpmn:sequenceFlow", NS) is None


def test_diagram_without_elements_yields_empty_output():
    assert SignavioBpmnEngine().transform(json.dumps(diagram())) == ""
    assert SignavioBpmnEngine().transform(json.dumps(diagram(shape("sid-x", "UnknownThing")))) == ""


@pytest.mark.parametrize("text", [
    "{broken",
    "[1, 2]",
    json.dumps({"stencilset": {"namespace": "http://b3mn.org/stencilset/UML2.2Class#"}, "childShapes": []}),
    json.dumps({"resourceId": "sid-x"}),
])
def test_invalid_models_raise(text):
    with pytest.raises(TransformationError):
        SignavioBpmnEngine().transform(text)


def test_xml_id():
    assert xml_id("sid-1A2B") == "sid-1A2B"
    assert xml_id("1234") == "sid-1234"
    assert xml_id("a b") == "sid-a_b"


def test_command_engine_returns_stdout():
    engine = CommandEngine([sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"])
    assert engine.transform("<model/>") == "<MODEL/>"


def test_command_engine_raises_on_failure():
    engine = CommandEngine([sys.executable, "-c", "import sys; sys.exit(3)"])
    with pytest.raises(TransformationError, match="status 3"):
        engine.transform("{}")


def test_command_engine_raises_on_missing_executable():
    with pytest.raises(TransformationError):
        CommandEngine("definitely-not-a-converter-binary --json").transform("{}")


def test_create_engine():
    assert isinstance(create_engine("signavio"), SignavioBpmnEngine)
    assert isinstance(create_engine("command", "java -jar connector.jar"), CommandEngine)
    with pytest.raises(ValueError):
        create_engine("command")
    with pytest.raises(ValueError):
        create_engine("activiti")


def _with_first_shape(**changes):
    model = linear_process(("Only",))
    model["childShapes"][0].update(changes)
    return json.dumps(model)


@pytest.mark.parametrize("text", [
    _with_first_shape(bounds={"upperLeft": {"x": "abc", "y": 0}, "lowerRight": {"x": 30, "y": 30}}),
    _with_first_shape(stencil={"id": 5}),
])
def test_malformed_shapes_raise_transformation_error(text):
    with pytest.raises(TransformationError, match="Malformed model"):
        SignavioBpmnEngine().transform(text)
