"""Unit tests for DNS providers."""

import logging

import pytest
from botocore.exceptions import ClientError

from awsacme.exceptions import DNSPropagationTimeout, DNSProviderError, HostedZoneNotFound
from awsacme.providers.base import DnsProvider, challenge_record_name
from awsacme.providers.route53 import Route53Provider


class TestDnsProviderInterface:
    """Tests for DnsProvider abstract interface."""

    def test_provider_implements_interface(self, fake_route53):
        """Route53Provider should implement DnsProvider interface."""
        provider = Route53Provider(client=fake_route53)
        assert isinstance(provider, DnsProvider)

    def test_cannot_instantiate_base(self):
        """The abstract base cannot be instantiated."""
        with pytest.raises(TypeError):
            DnsProvider()

    def test_challenge_record_name(self):
        """Record name is _acme-challenge.<domain> without trailing dot."""
        assert challenge_record_name("example.org") == "_acme-challenge.example.org"
        assert challenge_record_name("example.org.") == "_acme-challenge.example.org"


class TestFindHostedZone:
    """Tests for hosted zone resolution."""

    def test_longest_suffix_wins(self, route53_factory):
        """The most specific matching zone is selected."""
        fake = route53_factory(
            zones=[("/hostedzone/A", "example.com."), ("/hostedzone/B", "sub.example.com.")]
        )
        provider = Route53Provider(client=fake)

        zone = provider.find_hosted_zone("app.sub.example.com")

        assert zone["Name"] == "sub.example.com."

    def test_longest_suffix_wins_regardless_of_order(self, route53_factory):
        """Listing order does not matter when lengths differ."""
        fake = route53_factory(
            zones=[("/hostedzone/B", "sub.example.com."), ("/hostedzone/A", "example.com.")]
        )
        provider = Route53Provider(client=fake)

        assert provider.find_hosted_zone("app.sub.example.com")["Id"] == "/hostedzone/B"

    def test_equal_length_last_listed_wins(self, route53_factory):
        """Between equally long matches, the later-listed zone wins."""
        fake = route53_factory(
            zones=[("/hostedzone/public", "example.com."), ("/hostedzone/split", "example.com.")]
        )
        provider = Route53Provider(client=fake)

        assert provider.find_hosted_zone("www.example.com")["Id"] == "/hostedzone/split"

    def test_apex_domain_matches_its_zone(self, fake_route53):
        """A domain equal to the zone name matches."""
        provider = Route53Provider(client=fake_route53)

        assert provider.find_hosted_zone("example.org")["Id"] == "/hostedzone/Z1"

    def test_partial_label_does_not_match(self, route53_factory):
        """A zone matches on label boundaries only."""
        fake = route53_factory(zones=[("/hostedzone/A", "example.com.")])
        provider = Route53Provider(client=fake)

        with pytest.raises(HostedZoneNotFound) as exc_info:
            provider.find_hosted_zone("badexample.com")

        assert exc_info.value.domain == "badexample.com"

    def test_no_zone_raises(self, fake_route53):
        """A domain outside every zone raises HostedZoneNotFound."""
        provider = Route53Provider(client=fake_route53)

        with pytest.raises(HostedZoneNotFound):
            provider.find_hosted_zone("example.net")

    def test_follows_pagination(self, route53_factory):
        """Zones on later pages are considered."""
        zones = [(f"/hostedzone/Z{i}", f"zone{i}.example.") for i in range(5)]
        zones.append(("/hostedzone/target", "example.org."))
        fake = route53_factory(zones=zones, page_size=2)
        provider = Route53Provider(client=fake)

        assert provider.find_hosted_zone("www.example.org")["Id"] == "/hostedzone/target"
        assert fake.list_calls == 3

    def test_list_error_is_wrapped(self, fake_route53, monkeypatch):
        """API errors surface as DNSProviderError."""

        def fail(**kwargs):
            raise ClientError(
                {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "ListHostedZones"
            )

        monkeypatch.setattr(fake_route53, "list_hosted_zones", fail)
        provider = Route53Provider(client=fake_route53)

        with pytest.raises(DNSProviderError) as exc_info:
            provider.find_hosted_zone("example.org")

        assert isinstance(exc_info.value.__cause__, ClientError)


class TestRoute53Changes:
    """Tests for TXT record changes and the INSYNC wait."""

    def test_upsert_writes_quoted_txt_record(self, fake_route53):
        """UPSERT writes a quoted value with TTL 10."""
        provider = Route53Provider(client=fake_route53, poll_interval=0)

        provider.upsert_txt_record("example.org", "txt-value")

        assert fake_route53.records == {
            ("/hostedzone/Z1", "_acme-challenge.example.org"): ['"txt-value"']
        }
        batch = fake_route53.change_batches[0]
        assert batch["Comment"] == "updated by aaa"
        change = batch["Changes"][0]
        assert change["Action"] == "UPSERT"
        assert change["ResourceRecordSet"]["Type"] == "TXT"
        assert change["ResourceRecordSet"]["TTL"] == 10

    def test_delete_removes_record(self, fake_route53):
        """Upsert followed by delete leaves no record behind."""
        provider = Route53Provider(client=fake_route53, poll_interval=0)

        provider.upsert_txt_record("example.org", "txt-value")
        provider.delete_txt_record("example.org", "txt-value")

        assert fake_route53.records == {}
        assert fake_route53.change_batches[1]["Comment"] == "deleted by aaa"

    def test_insync_immediately_skips_polling(self, fake_route53):
        """No GetChange call is made when the change is already INSYNC."""
        provider = Route53Provider(client=fake_route53, poll_interval=0)

        provider.upsert_txt_record("example.org", "txt-value")

        assert fake_route53.get_change_calls == 0

    def test_waits_until_insync(self, route53_factory, log_capture):
        """A pending change is polled until it reports INSYNC."""
        fake = route53_factory(zones=[("/hostedzone/Z1", "example.org.")], polls_until_insync=2)
        provider = Route53Provider(client=fake, poll_interval=0)

        provider.upsert_txt_record("example.org", "txt-value")

        assert fake.get_change_calls == 2
        assert "TXT record change is INSYNC" in log_capture.get_messages(logging.INFO)

    def test_timeout_raises_propagation_timeout(self, route53_factory):
        """A change still pending at the deadline raises DNSPropagationTimeout."""
        fake = route53_factory(zones=[("/hostedzone/Z1", "example.org.")], polls_until_insync=99)
        provider = Route53Provider(client=fake, poll_interval=0, timeout=0)

        with pytest.raises(DNSPropagationTimeout) as exc_info:
            provider.upsert_txt_record("example.org", "txt-value")

        assert exc_info.value.last_status == "PENDING"
        assert exc_info.value.domain == "example.org"
        assert fake.get_change_calls == 1

    def test_rejected_change_raises_provider_error(self, fake_route53):
        """A rejected change batch raises DNSProviderError."""
        provider = Route53Provider(client=fake_route53, poll_interval=0)

        with pytest.raises(DNSProviderError):
            provider.delete_txt_record("example.org", "never-created")
