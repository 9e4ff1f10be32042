import json

import pytest

from bpmai_convert.engine import SignavioBpmnEngine, TransformationEngine, TransformationError


BPMN20_STENCILSET = {
    "url": "/stencilsets/bpmn2.0/bpmn2.0.json",
    "namespace": "http://b3mn.org/stencilset/bpmn2.0#",
}


def shape(rid, stencil, name=None, x=0, y=0, width=100, height=80, outgoing=(), children=(), **properties):
    if name is not None:
        properties['name'] = name
    return {
        "resourceId": rid,
        "stencil": {"id": stencil},
        "properties": properties,
        "bounds": {"upperLeft": {"x": x, "y": y}, "lowerRight": {"x": x + width, "y": y + height}},
        "outgoing": [{"resourceId": r} for r in outgoing],
        "childShapes": list(children),
    }


def flow(rid, target, name=None, **properties):
    data = shape(rid, "SequenceFlow", name=name, width=0, height=0, outgoing=[target], **properties)
    data["target"] = {"resourceId": target}
    return data


def linear_process(task_names=("Check order", "Ship order"), rid="sid-model"):
    """Start event -> tasks -> end event, each connected by a sequence flow."""
    node_ids = ["sid-start"] + [f"sid-task-{i}" for i in range(len(task_names))] + ["sid-end"]
    flow_ids = [f"sid-flow-{i}" for i in range(len(node_ids) - 1)]
    shapes = [shape("sid-start", "StartNoneEvent", x=0, width=30, height=30, outgoing=[flow_ids[0]])]
    for i, task_name in enumerate(task_names):
        shapes.append(shape(node_ids[i + 1], "Task", name=task_name, x=100 + 150 * i, outgoing=[flow_ids[i + 1]]))
    shapes.append(shape("sid-end", "EndNoneEvent", x=100 + 150 * len(task_names), width=28, height=28))
    shapes.extend(flow(fid, node_ids[i + 1]) for i, fid in enumerate(flow_ids))
    return {
        "resourceId": rid,
        "properties": {"name": "Order handling"},
        "stencil": {"id": "BPMNDiagram"},
        "stencilset": BPMN20_STENCILSET,
        "childShapes": shapes,
    }


def metadata(natural_language="en", modeling_language="bpmn20"):
    return {"model": {"naturalLanguage": natural_language, "modelingLanguage": modeling_language}}


class RecordingEngine(TransformationEngine):
    def __init__(self):
        self.inner = SignavioBpmnEngine()
        self.calls = 0

    def transform(self, json_text):
        self.calls += 1
        return self.inner.transform(json_text)


class FailingEngine(TransformationEngine):
    def transform(self, json_text):
        raise TransformationError("unsupported model")


class BlankEngine(TransformationEngine):
    def transform(self, json_text):
        return "   \n"


@pytest.fixture
def engine():
    return RecordingEngine()


@pytest.fixture
def write_json():
    def _write(path, data):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def bpmai_dir(tmp_path, write_json):
    """Flat BPMAI model directory with three models, two in English."""
    models = tmp_path / "models"
    models.mkdir()
    entries = {
        "1001": ("en", "bpmn20"),
        "1002": ("de", "bpmn20"),
        "1003": ("EN", "UML22Class"),
    }
    for model_id, (natural, modeling) in entries.items():
        write_json(models / f"{model_id}.json", linear_process(rid=f"sid-{model_id}"))
        write_json(models / f"{model_id}.meta.json", metadata(natural, modeling))
        (models / f"{model_id}.svg").write_text(f"<svg id='{model_id}'/>", encoding="utf-8")
    # model without metadata and metadata without model
    write_json(models / "1004.json", linear_process(rid="sid-1004"))
    write_json(models / "1005.meta.json", metadata())
    return models
