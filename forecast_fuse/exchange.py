"""
Renderings of a validated metadata record:

- YAML, the document as produced by `metadata.convert_value`
- EML 2.2 XML, the forecast block in 'additionalMetadata/metadata/forecast'
- JSON-LD, a schema.org graph of the dataset

Only a ValidatedRecord is accepted, an unvalidated record never reaches a file.
"""
import datetime
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import *

import rdflib
import yaml
from rdflib import BNode, Literal, Namespace, URIRef
from rdflib.namespace import RDF

from .validation import ValidatedRecord

log = logging.getLogger(__name__)

EML_NS = "https://eml.ecoinformatics.org/eml-2.2.0"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
PACKAGE_URN = "urn:forecast:"
SCHEMA = Namespace("https://schema.org/")


def _check(validated):
    if not isinstance(validated, ValidatedRecord):
        raise TypeError(f"Only a ValidatedRecord can be serialized, got {type(validated).__name__}. "
                        f"Call validation.validate() first.")


def _write(content: str, path: Union[str, Path, None], what: str) -> str:
    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("w", encoding="utf-8") as f:
                f.write(content)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        log.info(f"{what} written: {path}")
    return content


# ----------------------- YAML ----------------------- #

def to_yaml(validated: ValidatedRecord, path: Union[str, Path] = None) -> str:
    _check(validated)
    content = yaml.safe_dump(validated.document, sort_keys=False, allow_unicode=True)
    return _write(content, path, "Metadata YAML")


# ----------------------- EML XML ----------------------- #

def _text(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return str(value)


def _append(parent: ET.Element, tag: str, value):
    """
    Append `value` under `tag`: dict -> nested elements, list -> repeated elements,
    keys '@name' -> XML attributes, key '#text' -> element text.
    """
    if value is None:
        return
    if isinstance(value, list):
        for item in value:
            _append(parent, tag, item)
        return
    elem = ET.SubElement(parent, tag)
    if isinstance(value, dict):
        for key, item in value.items():
            if item is None:
                continue
            if key.startswith('@'):
                elem.set(key[1:], _text(item))
            elif key == '#text':
                elem.text = _text(item)
            else:
                _append(elem, key, item)
    else:
        elem.text = _text(value)


def _para(text):
    return None if text is None else {'para': text}


def _eml_person(person: Dict[str, Any]) -> Dict[str, Any]:
    return dict(individualName=person.get('individualName'),
                organizationName=person.get('organizationName'),
                electronicMailAddress=person.get('electronicMailAddress'),
                userId=person.get('userId'))


def _eml_coverage(coverage: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    temporal = coverage.get('temporalCoverage')
    if temporal:
        out['temporalCoverage'] = {'rangeOfDates': {
            'beginDate': {'calendarDate': temporal.get('beginDate')},
            'endDate': {'calendarDate': temporal.get('endDate')}}}
    out['geographicCoverage'] = coverage.get('geographicCoverage')
    taxa = coverage.get('taxonomicCoverage')
    if taxa:
        out['taxonomicCoverage'] = {'taxonomicClassification': [
            {'taxonRankName': 'Genus', 'taxonRankValue': t.get('Genus'),
             'taxonomicClassification': {'taxonRankName': 'Species', 'taxonRankValue': t.get('Species')}
             if t.get('Species') else None}
            for t in taxa]}
    return out


def _measurement_scale(attr: Dict[str, Any]) -> Dict[str, Any]:
    if 'formatString' in attr:
        return {'dateTime': {'formatString': attr['formatString']}}
    if 'numberType' not in attr:
        return {'nominal': {'nonNumericDomain': {'textDomain': {'definition': attr['attributeDefinition']}}}}
    bounds = []
    if attr.get('minimum') is not None:
        bounds.append({'minimum': {'@exclusive': False, '#text': attr['minimum']}})
    if attr.get('maximum') is not None:
        bounds.append({'maximum': {'@exclusive': False, '#text': attr['maximum']}})
    domain = {'numberType': attr['numberType'], 'bounds': bounds or None}
    unit = attr.get('unit')
    if unit is None:
        return {'interval': {'numericDomain': domain, 'precision': attr.get('precision')}}
    return {'ratio': {'unit': {'customUnit': unit}, 'precision': attr.get('precision'),
                      'numericDomain': domain}}


def _eml_attribute(attr: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(attributeName=attr['attributeName'],
               attributeDefinition=attr['attributeDefinition'],
               measurementScale=_measurement_scale(attr))
    if attr.get('missingValueCode') is not None:
        out['missingValueCode'] = {'code': attr['missingValueCode'], 'codeExplanation': 'not available'}
    return out


def _eml_table(table: Dict[str, Any]) -> Dict[str, Any]:
    physical = table.get('physical') or {}
    text_format = {'numHeaderLines': physical.get('numHeaderLines'),
                   'attributeOrientation': 'column',
                   'simpleDelimited': {'fieldDelimiter': physical.get('fieldDelimiter')}}
    eml_physical = dict(
        objectName=physical.get('objectName'),
        size={'@unit': 'bytes', '#text': physical.get('size')} if physical.get('size') is not None else None,
        authentication={'@method': 'MD5', '#text': physical.get('authentication')}
        if physical.get('authentication') else None,
        dataFormat={'textFormat': text_format})
    attributes = [_eml_attribute(a) for a in table.get('attributeList') or []]
    return dict(entityName=table.get('entityName'),
                entityDescription=table.get('entityDescription'),
                physical=eml_physical,
                attributeList={'attribute': attributes})


def _eml_dataset(dataset: Dict[str, Any]) -> Dict[str, Any]:
    # element order of the EML dataset module
    methods = dataset.get('methods')
    return dict(
        title=dataset.get('title'),
        creator=[_eml_person(p) for p in dataset.get('creator', [])],
        pubDate=dataset.get('pubDate'),
        abstract=_para(dataset.get('abstract')),
        keywordSet={'keyword': dataset['keywordSet']} if dataset.get('keywordSet') else None,
        intellectualRights=_para(dataset.get('intellectualRights')),
        coverage=_eml_coverage(dataset['coverage']) if dataset.get('coverage') else None,
        contact=_eml_person(dataset['contact']) if dataset.get('contact') else None,
        methods={'methodStep': {'description': _para(methods)}} if methods else None,
        dataTable=[_eml_table(t) for t in dataset.get('dataTable', [])])


def eml_element(validated: ValidatedRecord) -> ET.Element:
    _check(validated)
    doc = validated.document
    ET.register_namespace('eml', EML_NS)
    root = ET.Element(f"{{{EML_NS}}}eml", {
        'packageId': doc['packageId'],
        'system': doc['idSystem'],
        f"{{{XSI_NS}}}schemaLocation": f"{EML_NS} {EML_NS}/eml.xsd",
    })
    _append(root, 'dataset', _eml_dataset(doc['dataset']))
    _append(root, 'additionalMetadata', {'metadata': doc['additionalMetadata']})
    return root


def to_eml_xml(validated: ValidatedRecord, path: Union[str, Path] = None) -> str:
    root = eml_element(validated)
    tree = ET.ElementTree(root)
    ET.indent(tree, space="  ")
    content = '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")
    return _write(content + "\n", path, "Metadata EML")


# ----------------------- JSON-LD ----------------------- #

def _person_node(g: rdflib.Graph, person: Dict[str, Any]) -> BNode:
    node = BNode()
    name = person.get('individualName') or {}
    g.add((node, RDF.type, SCHEMA.Person))
    for key, term in (('givenName', SCHEMA.givenName), ('surName', SCHEMA.familyName)):
        if name.get(key):
            g.add((node, term, Literal(name[key])))
    if person.get('electronicMailAddress'):
        g.add((node, SCHEMA.email, Literal(person['electronicMailAddress'])))
    if person.get('organizationName'):
        org = BNode()
        g.add((org, RDF.type, SCHEMA.Organization))
        g.add((org, SCHEMA.name, Literal(person['organizationName'])))
        g.add((node, SCHEMA.affiliation, org))
    if person.get('userId'):
        g.add((node, SCHEMA.identifier, Literal(person['userId'])))
    return node


def _property_value(g: rdflib.Graph, name: str, value) -> BNode:
    node = BNode()
    g.add((node, RDF.type, SCHEMA.PropertyValue))
    g.add((node, SCHEMA.name, Literal(name)))
    g.add((node, SCHEMA.value, Literal(value)))
    return node


def _add_coverage(g: rdflib.Graph, ds: URIRef, coverage: Dict[str, Any]):
    temporal = coverage.get('temporalCoverage')
    if temporal:
        g.add((ds, SCHEMA.temporalCoverage,
               Literal(f"{_text(temporal['beginDate'])}/{_text(temporal['endDate'])}")))
    geo = coverage.get('geographicCoverage')
    if geo:
        place = BNode()
        g.add((place, RDF.type, SCHEMA.Place))
        if geo.get('geographicDescription'):
            g.add((place, SCHEMA.description, Literal(geo['geographicDescription'])))
        box = geo.get('boundingCoordinates') or {}
        corners = [box.get(f"{side}BoundingCoordinate") for side in ('south', 'west', 'north', 'east')]
        if all(c is not None for c in corners):
            shape = BNode()
            g.add((shape, RDF.type, SCHEMA.GeoShape))
            g.add((shape, SCHEMA.box, Literal(" ".join(str(c) for c in corners))))
            g.add((place, SCHEMA.geo, shape))
        g.add((ds, SCHEMA.spatialCoverage, place))
    for taxon in coverage.get('taxonomicCoverage') or []:
        node = BNode()
        g.add((node, RDF.type, SCHEMA.Taxon))
        g.add((node, SCHEMA.name, Literal(" ".join(v for v in (taxon.get('Genus'), taxon.get('Species')) if v))))
        g.add((ds, SCHEMA.about, node))


def _add_table(g: rdflib.Graph, ds: URIRef, table: Dict[str, Any]):
    node = BNode()
    g.add((node, RDF.type, SCHEMA.DataDownload))
    g.add((node, SCHEMA.name, Literal(table['entityName'])))
    g.add((node, SCHEMA.encodingFormat, Literal("text/csv")))
    if table.get('entityDescription'):
        g.add((node, SCHEMA.description, Literal(table['entityDescription'])))
    physical = table.get('physical') or {}
    if physical.get('size') is not None:
        g.add((node, SCHEMA.contentSize, Literal(f"{physical['size']} B")))
    if physical.get('objectName'):
        g.add((node, SCHEMA.contentUrl, Literal(physical['objectName'])))
    g.add((ds, SCHEMA.distribution, node))

    for attr in table.get('attributeList') or []:
        var = BNode()
        g.add((var, RDF.type, SCHEMA.PropertyValue))
        g.add((var, SCHEMA.name, Literal(attr['attributeName'])))
        g.add((var, SCHEMA.description, Literal(attr['attributeDefinition'])))
        if attr.get('unit'):
            g.add((var, SCHEMA.unitText, Literal(attr['unit'])))
        for key, term in (('minimum', SCHEMA.minValue), ('maximum', SCHEMA.maxValue)):
            if attr.get(key) is not None:
                g.add((var, term, Literal(attr[key])))
        g.add((ds, SCHEMA.variableMeasured, var))


def _flatten(prefix: str, value) -> Iterator[Tuple[str, Any]]:
    if isinstance(value, dict):
        for key, item in value.items():
            yield from _flatten(f"{prefix}/{key}" if prefix else key, item)
    elif value is not None:
        yield prefix, value


def jsonld_graph(validated: ValidatedRecord) -> rdflib.Graph:
    _check(validated)
    doc = validated.document
    dataset = doc['dataset']
    g = rdflib.Graph()
    g.bind('schema', SCHEMA)

    ds = URIRef(f"{PACKAGE_URN}{doc['packageId']}")
    g.add((ds, RDF.type, SCHEMA.Dataset))
    g.add((ds, SCHEMA.identifier, Literal(doc['packageId'])))
    g.add((ds, SCHEMA.name, Literal(dataset['title'])))
    g.add((ds, SCHEMA.datePublished, Literal(dataset['pubDate'])))
    if dataset.get('abstract'):
        g.add((ds, SCHEMA.description, Literal(dataset['abstract'])))
    if dataset.get('intellectualRights'):
        g.add((ds, SCHEMA.license, Literal(dataset['intellectualRights'])))
    for keyword in dataset.get('keywordSet') or []:
        g.add((ds, SCHEMA.keywords, Literal(keyword)))
    for person in dataset.get('creator', []):
        g.add((ds, SCHEMA.creator, _person_node(g, person)))
    if dataset.get('contact'):
        g.add((ds, SCHEMA.accountablePerson, _person_node(g, dataset['contact'])))
    if dataset.get('coverage'):
        _add_coverage(g, ds, dataset['coverage'])
    for table in dataset.get('dataTable', []):
        _add_table(g, ds, table)

    # forecast extension as flat name/value pairs, e.g. 'process_error/propagation/size'
    for name, value in _flatten("", doc['additionalMetadata']['forecast']):
        g.add((ds, SCHEMA.additionalProperty, _property_value(g, name, value)))
    return g


def to_jsonld(validated: ValidatedRecord, path: Union[str, Path] = None) -> str:
    g = jsonld_graph(validated)
    content = g.serialize(format='json-ld', context={"@vocab": str(SCHEMA)}, indent=2)
    return _write(content, path, "Metadata JSON-LD")
