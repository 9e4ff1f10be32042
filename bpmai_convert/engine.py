"""
Transformation engines: Signavio JSON in, BPMN 2.0 XML out.

``SignavioBpmnEngine`` converts the Signavio BPMN 2.0 stencil set directly.
``CommandEngine`` hands the JSON to an external converter (for instance a
wrapper around the Activiti Signavio connector) and reads XML from its stdout.
Both raise ``TransformationError`` instead of returning partial output.
"""

import json
import re
import shlex
import subprocess
import xml.etree.ElementTree as ET
from collections import defaultdict
from typing import Dict, List, Optional

from loguru import logger


BPMN_NS = "http://www.omg.org/spec/BPMN/20100524/MODEL"
BPMNDI_NS = "http://www.omg.org/spec/BPMN/20100524/DI"
DC_NS = "http://www.omg.org/spec/DD/20100524/DC"
DI_NS = "http://www.omg.org/spec/DD/20100524/DI"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
TARGET_NS = "http://www.signavio.com/bpmn20"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

ET.register_namespace("bpmn", BPMN_NS)
ET.register_namespace("bpmndi", BPMNDI_NS)
ET.register_namespace("dc", DC_NS)
ET.register_namespace("di", DI_NS)
ET.register_namespace("xsi", XSI_NS)

TASK_TYPES = {
    'User': 'userTask',
    'Service': 'serviceTask',
    'Send': 'sendTask',
    'Receive': 'receiveTask',
    'Manual': 'manualTask',
    'Script': 'scriptTask',
    'Business Rule': 'businessRuleTask',
}

ACTIVITY_STENCILS = {
    'Subprocess': 'subProcess',
    'EventSubprocess': 'subProcess',
    'CollapsedSubprocess': 'subProcess',
    'CollapsedEventSubprocess': 'subProcess',
    'CallActivity': 'callActivity',
}

GATEWAY_STENCILS = {
    'Exclusive_Databased_Gateway': 'exclusiveGateway',
    'Exclusive_Eventbased_Gateway': 'eventBasedGateway',
    'EventbasedGateway': 'eventBasedGateway',
    'ParallelGateway': 'parallelGateway',
    'InclusiveGateway': 'inclusiveGateway',
    'ComplexGateway': 'complexGateway',
}

ARTIFACT_STENCILS = {
    'TextAnnotation': 'textAnnotation',
    'DataObject': 'dataObject',
    'DataStore': 'dataStoreReference',
}

EVENT_DEFINITIONS = [
    ('Message', 'messageEventDefinition'),
    ('Timer', 'timerEventDefinition'),
    ('Error', 'errorEventDefinition'),
    ('Escalation', 'escalationEventDefinition'),
    ('Signal', 'signalEventDefinition'),
    ('Conditional', 'conditionalEventDefinition'),
    ('Compensation', 'compensateEventDefinition'),
    ('Cancel', 'cancelEventDefinition'),
    ('Link', 'linkEventDefinition'),
    ('Terminate', 'terminateEventDefinition'),
]

POOL_STENCILS = {'Pool', 'CollapsedPool'}
LANE_STENCIL = 'Lane'
SEQUENCE_FLOW = 'SequenceFlow'
MESSAGE_FLOW = 'MessageFlow'
ASSOCIATIONS = {'Association_Undirected', 'Association_Unidirectional', 'Association_Bidirectional'}

_NCNAME = re.compile(r'^[A-Za-z_][\w.-]*$')


class TransformationError(Exception):
    """The engine could not produce XML for a model."""


class TransformationEngine:
    """Turns the text of one model file into the text of the converted model."""

    def transform(self, json_text: str) -> str:
        raise NotImplementedError


def xml_id(value) -> str:
    value = str(value)
    if _NCNAME.match(value):
        return value
    return 'sid-' + re.sub(r'[^\w.-]', '_', value)


def _q(ns, tag):
    return f"{{{ns}}}{tag}"


def _num(value) -> str:
    return str(round(float(value), 2))


def _point(node, key):
    point = node.get(key) if isinstance(node, dict) else None
    if not isinstance(point, dict):
        return 0.0, 0.0
    return float(point.get('x', 0) or 0), float(point.get('y', 0) or 0)


class _Shape:
    """A Signavio shape with its absolute bounds."""

    def __init__(self, data: dict, parent: Optional['_Shape'], offset):
        self.data = data
        self.parent = parent
        self.rid = data['resourceId']
        stencil = data.get('stencil')
        self.stencil = stencil.get('id', '') if isinstance(stencil, dict) else ''
        properties = data.get('properties')
        self.properties = properties if isinstance(properties, dict) else {}
        bounds = data.get('bounds')
        ul_x, ul_y = _point(bounds, 'upperLeft')
        lr_x, lr_y = _point(bounds, 'lowerRight')
        self.x = offset[0] + ul_x
        self.y = offset[1] + ul_y
        self.width = max(lr_x - ul_x, 0.0)
        self.height = max(lr_y - ul_y, 0.0)
        self.tag = None

    @property
    def name(self) -> str:
        name = self.properties.get('name')
        return str(name).strip() if name else ''

    @property
    def outgoing(self) -> List[str]:
        refs = self.data.get('outgoing') or []
        return [r['resourceId'] for r in refs if isinstance(r, dict) and r.get('resourceId')]

    @property
    def target(self) -> Optional[str]:
        target = self.data.get('target')
        if isinstance(target, dict) and target.get('resourceId'):
            return target['resourceId']
        outgoing = self.outgoing
        return outgoing[0] if outgoing else None

    @property
    def center(self):
        return self.x + self.width / 2, self.y + self.height / 2

    def ancestor(self, stencils) -> Optional['_Shape']:
        parent = self.parent
        while parent is not None and parent.stencil not in stencils:
            parent = parent.parent
        return parent


def element_tag(shape: _Shape) -> Optional[str]:
    """BPMN element name for a Signavio node stencil, ``None`` for connectors and unknown shapes."""
    stencil = shape.stencil
    if stencil == 'Task':
        return TASK_TYPES.get(shape.properties.get('tasktype'), 'task')
    if stencil in ACTIVITY_STENCILS:
        return ACTIVITY_STENCILS[stencil]
    if stencil in GATEWAY_STENCILS:
        return GATEWAY_STENCILS[stencil]
    if stencil in ARTIFACT_STENCILS:
        return ARTIFACT_STENCILS[stencil]
    if 'Event' in stencil:
        if stencil.startswith('Start'):
            return 'startEvent'
        if stencil.startswith('End'):
            return 'endEvent'
        if stencil.startswith('Intermediate'):
            return 'intermediateThrowEvent' if 'Throwing' in stencil else 'intermediateCatchEvent'
    return None


def event_definition(stencil: str) -> Optional[str]:
    for keyword, definition in EVENT_DEFINITIONS:
        if keyword in stencil:
            return definition
    return None


class _SignavioDocument:
    """One parsed Signavio diagram, grouped into BPMN scopes."""

    def __init__(self, model: dict):
        self.model = model
        self.doc_id = xml_id(model.get('resourceId') or 'definitions')
        self.shapes: Dict[str, _Shape] = {}
        self._collect(model.get('childShapes'), None, (0.0, 0.0))

        # A connector's source is the shape whose outgoing list references it.
        self.sources: Dict[str, str] = {}
        for shape in self.shapes.values():
            for ref in shape.outgoing:
                self.sources.setdefault(ref, shape.rid)

        self.pools = [s for s in self.shapes.values() if s.stencil in POOL_STENCILS]
        self.nodes_by_scope = defaultdict(list)
        for shape in self.shapes.values():
            shape.tag = element_tag(shape)
            if shape.tag:
                self.nodes_by_scope[self.scope_of(shape)].append(shape)

        self.flows_by_scope = defaultdict(list)
        self.associations_by_scope = defaultdict(list)
        self.message_flows = []
        for shape in self.shapes.values():
            if shape.stencil in (SEQUENCE_FLOW, MESSAGE_FLOW) or shape.stencil in ASSOCIATIONS:
                self._add_connector(shape)

    def _collect(self, children, parent, offset):
        for child in children or []:
            if not isinstance(child, dict) or not child.get('resourceId'):
                continue
            shape = _Shape(child, parent, offset)
            self.shapes[shape.rid] = shape
            self._collect(child.get('childShapes'), shape, (shape.x, shape.y))

    def scope_of(self, shape: _Shape) -> Optional[str]:
        """Resource id of the enclosing sub-process or pool; ``None`` for the default process."""
        container = shape.ancestor(set(ACTIVITY_STENCILS) | POOL_STENCILS)
        return container.rid if container is not None else None

    def _is_node(self, rid) -> bool:
        return rid in self.shapes and self.shapes[rid].tag is not None

    def _add_connector(self, shape: _Shape):
        source, target = self.sources.get(shape.rid), shape.target
        if shape.stencil == MESSAGE_FLOW:
            endpoints_ok = all(
                self._is_node(r) or (r in self.shapes and self.shapes[r].stencil in POOL_STENCILS)
                for r in (source, target)
            )
            if endpoints_ok:
                self.message_flows.append((shape, source, target))
                return
        elif self._is_node(source) and self._is_node(target):
            scope = self.scope_of(self.shapes[source])
            if shape.stencil == SEQUENCE_FLOW:
                self.flows_by_scope[scope].append((shape, source, target))
            else:
                self.associations_by_scope[scope].append((shape, source, target))
            return
        logger.debug(f"Dropping dangling {shape.stencil} {shape.rid}")

    def process_id(self, scope) -> str:
        return f"process_{xml_id(scope) if scope else self.doc_id}"

    def to_xml(self) -> str:
        if not any(self.nodes_by_scope.values()):
            return ''

        definitions = ET.Element(_q(BPMN_NS, 'definitions'), {
            'id': f"definitions_{self.doc_id}",
            'targetNamespace': TARGET_NS,
            'exporter': 'bpmai-convert',
        })
        collaboration = None
        if self.pools:
            collaboration = ET.SubElement(definitions, _q(BPMN_NS, 'collaboration'),
                                          {'id': f"collaboration_{self.doc_id}"})
            for pool in self.pools:
                attrs = {'id': xml_id(pool.rid), 'processRef': self.process_id(pool.rid)}
                if pool.name:
                    attrs['name'] = pool.name
                ET.SubElement(collaboration, _q(BPMN_NS, 'participant'), attrs)
            for shape, source, target in self.message_flows:
                self._connector_element(collaboration, 'messageFlow', shape, source, target)

        if self.nodes_by_scope.get(None):
            self._process_element(definitions, None)
        for pool in self.pools:
            self._process_element(definitions, pool)

        self._diagram_element(definitions, collaboration)
        ET.indent(definitions, space='  ')
        return XML_DECLARATION + ET.tostring(definitions, encoding='unicode')

    def _process_element(self, parent, pool: Optional[_Shape]):
        scope = pool.rid if pool is not None else None
        attrs = {'id': self.process_id(scope), 'isExecutable': 'false'}
        if pool is not None and pool.name:
            attrs['name'] = pool.name
        process = ET.SubElement(parent, _q(BPMN_NS, 'process'), attrs)
        if pool is not None:
            self._lane_set(process, pool)
        self._fill_scope(process, scope)

    def _lane_set(self, process, pool: _Shape):
        lanes = [s for s in self.shapes.values()
                 if s.stencil == LANE_STENCIL and s.ancestor(POOL_STENCILS) is pool]
        if not lanes:
            return
        lane_set = ET.SubElement(process, _q(BPMN_NS, 'laneSet'), {'id': f"laneSet_{xml_id(pool.rid)}"})
        for lane in lanes:
            attrs = {'id': xml_id(lane.rid)}
            if lane.name:
                attrs['name'] = lane.name
            lane_el = ET.SubElement(lane_set, _q(BPMN_NS, 'lane'), attrs)
            for node in self.nodes_by_scope.get(pool.rid, []):
                if node.ancestor({LANE_STENCIL}) is lane:
                    ET.SubElement(lane_el, _q(BPMN_NS, 'flowNodeRef')).text = xml_id(node.rid)

    def _fill_scope(self, container, scope):
        for shape in self.nodes_by_scope.get(scope, []):
            element = ET.SubElement(container, _q(BPMN_NS, shape.tag), {'id': xml_id(shape.rid)})
            documentation = shape.properties.get('documentation')
            if documentation:
                ET.SubElement(element, _q(BPMN_NS, 'documentation')).text = str(documentation)
            if shape.tag == 'textAnnotation':
                text = shape.properties.get('text') or shape.name
                ET.SubElement(element, _q(BPMN_NS, 'text')).text = str(text)
                continue
            if shape.name:
                element.set('name', shape.name)
            if shape.tag.endswith('Event'):
                definition = event_definition(shape.stencil)
                if definition:
                    ET.SubElement(element, _q(BPMN_NS, definition),
                                  {'id': f"{xml_id(shape.rid)}_definition"})
            if shape.tag == 'subProcess':
                if 'EventSubprocess' in shape.stencil:
                    element.set('triggeredByEvent', 'true')
                self._fill_scope(element, shape.rid)

        for shape, source, target in self.flows_by_scope.get(scope, []):
            flow = self._connector_element(container, 'sequenceFlow', shape, source, target)
            condition = shape.properties.get('conditionexpression')
            if condition:
                expression = ET.SubElement(flow, _q(BPMN_NS, 'conditionExpression'),
                                           {_q(XSI_NS, 'type'): 'bpmn:tFormalExpression'})
                expression.text = str(condition)
        for shape, source, target in self.associations_by_scope.get(scope, []):
            self._connector_element(container, 'association', shape, source, target)

    def _connector_element(self, parent, tag, shape, source, target):
        attrs = {'id': xml_id(shape.rid), 'sourceRef': xml_id(source), 'targetRef': xml_id(target)}
        if shape.name:
            attrs['name'] = shape.name
        return ET.SubElement(parent, _q(BPMN_NS, tag), attrs)

    def _diagram_element(self, definitions, collaboration):
        diagram = ET.SubElement(definitions, _q(BPMNDI_NS, 'BPMNDiagram'), {'id': f"diagram_{self.doc_id}"})
        plane_ref = collaboration.get('id') if collaboration is not None else self.process_id(None)
        plane = ET.SubElement(diagram, _q(BPMNDI_NS, 'BPMNPlane'),
                              {'id': f"plane_{self.doc_id}", 'bpmnElement': plane_ref})

        for shape in self.shapes.values():
            if not (shape.tag or shape.stencil in POOL_STENCILS or shape.stencil == LANE_STENCIL):
                continue
            attrs = {'id': f"{xml_id(shape.rid)}_gui", 'bpmnElement': xml_id(shape.rid)}
            if shape.stencil in POOL_STENCILS or shape.stencil == LANE_STENCIL:
                attrs['isHorizontal'] = 'true'
            elif shape.tag == 'subProcess':
                attrs['isExpanded'] = 'false' if shape.stencil.startswith('Collapsed') else 'true'
            di_shape = ET.SubElement(plane, _q(BPMNDI_NS, 'BPMNShape'), attrs)
            ET.SubElement(di_shape, _q(DC_NS, 'Bounds'), {
                'x': _num(shape.x), 'y': _num(shape.y),
                'width': _num(shape.width), 'height': _num(shape.height),
            })

        connectors = list(self.message_flows) if collaboration is not None else []
        for scoped in (self.flows_by_scope, self.associations_by_scope):
            for items in scoped.values():
                connectors.extend(items)
        for shape, source, target in connectors:
            edge = ET.SubElement(plane, _q(BPMNDI_NS, 'BPMNEdge'),
                                 {'id': f"{xml_id(shape.rid)}_gui", 'bpmnElement': xml_id(shape.rid)})
            for x, y in self._waypoints(shape, source, target):
                ET.SubElement(edge, _q(DI_NS, 'waypoint'), {'x': _num(x), 'y': _num(y)})

    def _waypoints(self, shape, source, target):
        # First and last dockers are relative to the connected shapes; the bends between are absolute.
        dockers = [d for d in shape.data.get('dockers') or [] if isinstance(d, dict)]
        bends = [(float(d.get('x', 0) or 0), float(d.get('y', 0) or 0)) for d in dockers[1:-1]]
        return [self.shapes[source].center, *bends, self.shapes[target].center]


class SignavioBpmnEngine(TransformationEngine):
    """Converts models of the Signavio BPMN 2.0 stencil set."""

    def transform(self, json_text: str) -> str:
        try:
            model = json.loads(json_text)
        except json.JSONDecodeError as e:
            raise TransformationError(f"Invalid model JSON: {e}") from e
        if not isinstance(model, dict):
            raise TransformationError("Model JSON is not an object")

        stencilset = model.get('stencilset')
        namespace = stencilset.get('namespace', '') if isinstance(stencilset, dict) else ''
        if namespace and 'bpmn2.0' not in namespace:
            raise TransformationError(f"Unsupported stencil set: {namespace}")
        if not isinstance(model.get('childShapes'), list):
            raise TransformationError("Model has no childShapes")

        try:
            return _SignavioDocument(model).to_xml()
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TransformationError(f"Malformed model: {e!r}") from e


class CommandEngine(TransformationEngine):
    """Runs an external converter: model JSON on stdin, XML on stdout."""

    def __init__(self, command, timeout: Optional[float] = None):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("Converter command must not be empty")
        self.timeout = timeout

    def transform(self, json_text: str) -> str:
        try:
            result = subprocess.run(
                self.command, input=json_text, capture_output=True,
                encoding='utf-8', timeout=self.timeout, check=False
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TransformationError(f"Could not run {self.command[0]}: {e}") from e
        if result.returncode != 0:
            raise TransformationError(
                f"{self.command[0]} exited with status {result.returncode}: {result.stderr.strip()}")
        return result.stdout


def create_engine(name: str = 'signavio', command=None) -> TransformationEngine:
    if name == 'signavio':
        return SignavioBpmnEngine()
    if name == 'command':
        if not command:
            raise ValueError("The 'command' engine needs a converter command")
        return CommandEngine(command)
    raise ValueError(f"Unsupported engine: {name}")
