import pytest

from fargate_pipeline.aws.dns import DnsRecordHandler
from fargate_pipeline.exceptions import Conflict
from fargate_pipeline.resources import Resource, ResourceKind


@pytest.fixture
def hosted_zone_id(route53_client):
    response = route53_client.create_hosted_zone(Name="example.com", CallerReference="tests")
    return response["HostedZone"]["Id"]


def record(hosted_zone_id, **overrides):
    spec = {
        "hosted_zone_id": hosted_zone_id,
        "record_name": "app.example.com",
        "alias_dns_name": "test-alb-123.us-east-1.elb.amazonaws.com",
        "alias_hosted_zone_id": "Z35SXDOTRQ7X7K",
    }
    spec.update(overrides)
    return Resource.declare(ResourceKind.DNS_RECORD, "app", spec)


def test_create_upserts_alias_record(route53_client, hosted_zone_id):
    handler = DnsRecordHandler(route53_client)

    created = handler.create(record(hosted_zone_id))

    assert created.remote_id == "app.example.com."
    found = handler.find(record(hosted_zone_id))
    assert found is not None
    assert found.attributes["fqdn"] == "app.example.com."


def test_update_repoints_alias(route53_client, hosted_zone_id):
    handler = DnsRecordHandler(route53_client)
    handler.create(record(hosted_zone_id))

    handler.update(record(hosted_zone_id, alias_dns_name="other-alb.us-east-1.elb.amazonaws.com"),
                   record(hosted_zone_id))

    record_sets = route53_client.list_resource_record_sets(HostedZoneId=hosted_zone_id)["ResourceRecordSets"]
    aliases = [r for r in record_sets if r["Type"] == "A"]
    assert len(aliases) == 1
    assert aliases[0]["AliasTarget"]["DNSName"].startswith("other-alb")


def test_renaming_record_is_a_conflict(route53_client, hosted_zone_id):
    handler = DnsRecordHandler(route53_client)

    with pytest.raises(Conflict):
        handler.update(record(hosted_zone_id, record_name="www.example.com"), record(hosted_zone_id))


def test_delete_record(route53_client, hosted_zone_id):
    handler = DnsRecordHandler(route53_client)
    handler.create(record(hosted_zone_id))

    handler.delete(record(hosted_zone_id))

    assert handler.find(record(hosted_zone_id)) is None
