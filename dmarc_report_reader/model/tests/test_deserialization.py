from xsdata.formats.dataclass.context import XmlContext
from xsdata.formats.dataclass.parsers import XmlParser
from xsdata.formats.dataclass.parsers.config import ParserConfig

from dmarc_report_reader.model.aggregate_report import Feedback

from .sample_data import SAMPLE_DATACLASS, create_sample_xml


def _parser() -> XmlParser:
    return XmlParser(
        context=XmlContext(), config=ParserConfig(fail_on_unknown_properties=False)
    )


def test_deserialization():
    assert _parser().from_string(create_sample_xml(), Feedback) == SAMPLE_DATACLASS


def test_deserialization_keeps_values_outside_the_schema_enumerations():
    xml = create_sample_xml(policy="Quarantine ")
    feedback = _parser().from_string(xml, Feedback)
    assert feedback.policy_published.p.strip() == "Quarantine"


def test_deserialization_ignores_unknown_elements():
    xml = create_sample_xml().replace(
        "<policy_published>", "<policy_published><vendor_extension/>"
    )
    assert _parser().from_string(xml, Feedback) == SAMPLE_DATACLASS
