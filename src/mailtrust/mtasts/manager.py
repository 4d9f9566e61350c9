"""
MTA-STS policy hosting on edge workers.

Deployment is a sequence of independent provider calls: KV namespace,
policy value, worker script, route, ``_mta-sts`` TXT record and a
placeholder A record. Nothing is rolled back when a step fails; the worker
is marked ERROR and the error propagates. Every step is an upsert, so
running the deployment again picks up where it failed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from mailtrust.common.exceptions import (
    ConflictError,
    InvalidInputError,
    MailTrustError,
    NotFoundError,
)
from mailtrust.common.models import (
    Domain,
    MtaStsPolicyMode,
    MtaStsWorker,
    MtaStsWorkerStatus,
    ProviderType,
    utcnow,
)
from mailtrust.common.storage import Storage
from mailtrust.crypto.vault import SecretVault
from mailtrust.dns.resolver import DNSResolver, normalize_domain
from mailtrust.providers.base import DnsProviderBackend, EdgeWorkerCapability
from mailtrust.providers.gateway import ProviderGateway
from mailtrust.providers.publisher import RecordPublisher

logger = logging.getLogger(__name__)

POLICY_MAX_AGE = 86400
POLICY_KV_KEY = "policy"
POLICY_KV_BINDING = "POLICY_KV"
PLACEHOLDER_ADDRESS = "192.0.2.1"

WORKER_SCRIPT = """\
export default {
  async fetch(request, env) {
    const url = new URL(request.url);
    if (url.pathname !== "/.well-known/mta-sts.txt") {
      return new Response("Not found", { status: 404 });
    }
    const policy = await env.POLICY_KV.get("policy");
    if (policy === null) {
      return new Response("Policy unavailable", { status: 503 });
    }
    return new Response(policy, {
      headers: { "Content-Type": "text/plain", "Cache-Control": "max-age=3600" },
    });
  },
};
"""


def worker_name_for(domain: str) -> str:
    return "mta-sts-" + normalize_domain(domain).replace(".", "-")


def _policy_mode(mode: MtaStsPolicyMode | str) -> MtaStsPolicyMode:
    try:
        return MtaStsPolicyMode(mode)
    except ValueError:
        raise InvalidInputError("mode", mode, "must be testing, enforce or none")


@dataclass
class _EdgeContext:
    edge: EdgeWorkerCapability
    backend: DnsProviderBackend
    credentials: dict[str, Any]
    account_id: str


class MtaStsManager:
    """Deploys and updates MTA-STS policy workers for domains."""

    def __init__(
        self,
        storage: Storage,
        vault: SecretVault,
        gateway: ProviderGateway,
        resolver: DNSResolver,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.vault = vault
        self.gateway = gateway
        self.resolver = resolver
        self.publisher = RecordPublisher(storage, vault, gateway)
        self.now = now

    def generate_policy(self, domain: str, mode: MtaStsPolicyMode | str) -> str:
        """Build the policy text, listing the domain's current MX hosts."""
        lines = [
            "version: STSv1",
            f"mode: {_policy_mode(mode).value}",
            f"max_age: {POLICY_MAX_AGE}",
        ]
        hosts = []
        for mx in self.resolver.resolve_mx(domain):
            parts = mx.split(" ", 1)
            if len(parts) > 1 and parts[1].strip():
                hosts.append(normalize_domain(parts[1]))
        if not hosts:
            hosts.append(f"mx.{normalize_domain(domain)}")
        lines.extend(f"mx: {host}" for host in hosts)
        return "\n".join(lines) + "\n"

    def get_worker(self, domain_id: int) -> Optional[MtaStsWorker]:
        worker = self.storage.get_mta_sts_worker(domain_id)
        logger.debug("Retrieved MTA-STS worker for domain %s", domain_id)
        return worker

    def _context(self, domain: Domain) -> _EdgeContext:
        if domain.dns_provider_id is None:
            raise ConflictError(f"No DNS provider configured for domain: {domain.name}")
        provider = self.storage.require_provider(domain.dns_provider_id)
        if provider.type != ProviderType.CLOUDFLARE:
            raise ConflictError(
                "Automatic MTA-STS deployment is currently only supported for Cloudflare."
            )

        credentials = self.vault.decrypt_json(provider.encrypted_credentials)
        account_id = credentials.get("accountId")
        if not account_id:
            raise InvalidInputError(
                "credentials", "accountId",
                "Cloudflare accountId is required for MTA-STS deployment",
            )
        return _EdgeContext(
            edge=self.gateway.edge_workers(provider.type),
            backend=self.gateway.backend(provider.type),
            credentials=credentials,
            account_id=account_id,
        )

    def _write_policy(self, domain: Domain, worker: MtaStsWorker, ctx: _EdgeContext) -> None:
        policy = self.generate_policy(domain.name, worker.policy_mode)
        ctx.edge.write_kv_value(
            ctx.account_id, worker.kv_namespace_id, POLICY_KV_KEY, policy, ctx.credentials
        )

    def _announce_policy(self, domain: Domain, worker: MtaStsWorker) -> None:
        """Publish a new policy id so senders refetch the policy."""
        worker.policy_version = str(int(self.now().timestamp()))
        self.publisher.publish(
            domain.id, "TXT", f"_mta-sts.{domain.name}", f"v=STSv1; id={worker.policy_version}"
        )

    def initiate_deployment(self, domain_id: int) -> MtaStsWorker:
        """
        Deploy (or redeploy) the MTA-STS worker for a domain.

        Raises:
            NotFoundError: If the domain or its provider does not exist.
            ConflictError: If the domain has no Cloudflare DNS provider.
            InvalidInputError: If the credentials lack ``accountId``.
            MailTrustError: If a provider step fails; the worker is left ERROR.
        """
        domain = self.storage.require_domain(domain_id)
        ctx = self._context(domain)

        worker = self.storage.get_mta_sts_worker(domain_id) or MtaStsWorker(
            domain_id=domain_id, worker_name=worker_name_for(domain.name)
        )
        worker.status = MtaStsWorkerStatus.PENDING
        worker = self.storage.save_mta_sts_worker(worker)

        try:
            if not worker.kv_namespace_id:
                worker.kv_namespace_id = ctx.edge.create_kv_namespace(
                    ctx.account_id, f"mta-sts-{domain.name}", ctx.credentials
                )
            self._write_policy(domain, worker, ctx)
            worker.worker_id = ctx.edge.create_worker_script(
                ctx.account_id,
                worker.worker_name,
                WORKER_SCRIPT,
                ctx.credentials,
                kv_bindings={POLICY_KV_BINDING: worker.kv_namespace_id},
            )

            zone_id = ctx.backend.resolve_zone_id(domain.name, ctx.credentials)
            ctx.edge.create_worker_route(
                zone_id,
                f"mta-sts.{domain.name}/.well-known/mta-sts.txt",
                worker.worker_name,
                ctx.credentials,
            )
            self._announce_policy(domain, worker)

            try:
                self.publisher.publish(
                    domain_id, "A", f"mta-sts.{domain.name}", PLACEHOLDER_ADDRESS
                )
            except MailTrustError as e:
                logger.warning("Placeholder A record for mta-sts.%s failed: %s", domain.name, e)

            worker.status = MtaStsWorkerStatus.DEPLOYED
            worker.deployed_at = self.now()
        except Exception as e:
            worker.status = MtaStsWorkerStatus.ERROR
            self.storage.save_mta_sts_worker(worker)
            logger.error("MTA-STS deployment failed for domain %s: %s", domain.name, e)
            raise

        saved = self.storage.save_mta_sts_worker(worker)
        logger.info("Deployed MTA-STS worker %s for %s", saved.worker_name, domain.name)
        return saved

    def update_policy_mode(self, domain_id: int, mode: MtaStsPolicyMode | str) -> MtaStsWorker:
        """
        Change the policy mode; a deployed worker gets the new policy at once.

        Raises:
            NotFoundError: If the domain has no MTA-STS worker.
            InvalidInputError: If the mode is not testing, enforce or none.
        """
        worker = self.storage.get_mta_sts_worker(domain_id)
        if worker is None:
            raise NotFoundError("MTA-STS worker", domain_id)

        worker.policy_mode = _policy_mode(mode)
        if worker.status == MtaStsWorkerStatus.DEPLOYED and worker.kv_namespace_id:
            domain = self.storage.require_domain(domain_id)
            self._write_policy(domain, worker, self._context(domain))
            self._announce_policy(domain, worker)

        saved = self.storage.save_mta_sts_worker(worker)
        logger.info("Updated MTA-STS policy mode to '%s' for domain %s", saved.policy_mode, domain_id)
        return saved
