from __future__ import annotations

import logging

from dependency_injector import containers, providers

from ..config.settings import AppConfig
from ..config.tokens import rate_limit_namespace
from ..core.ports.clock_port import SystemClock
from ..core.services.ecosystem_mapper import DescriptionEcosystemMapper
from ..core.services.extractor_registry import ExtractorRegistry
from ..core.services.identifier_resolver import IdentifierResolver
from ..core.services.vulnerability_resolver import VulnerabilityResolver
from ..core.usecases.analyze_artifacts import AnalyzeArtifactsUseCase
from ..core.usecases.purge_corpus import PurgeCorpusUseCase
from ..core.usecases.synchronize import SyncPolicy, SynchronizeCorpusUseCase
from ..infra.cache_diskcache import DiskCacheAdapter
from ..infra.file_name_extractor import FileNameExtractor
from ..infra.http_client import HttpClient
from ..infra.memory_index import InMemoryIdentificationIndex
from ..infra.nvd_source import NvdApiSource
from ..infra.rate_limiter import SlidingWindowRateLimiter
from ..infra.sql_store import SqlVulnerabilityStore

logger = logging.getLogger(__name__)


def cache_resource(cache_dir):
	cache_dir_str = str(cache_dir) if cache_dir else None
	logger.info(f"Initializing rate-limit cache at: {cache_dir_str or 'default user cache directory'}")
	with DiskCacheAdapter(namespace="nvd", base_dir=cache_dir_str) as cache:
		yield cache
	logger.debug("Cache closed")


def store_resource(app_config: AppConfig, clock):
	store = SqlVulnerabilityStore(app_config.resolved_database_url, clock=clock)
	store.open()
	logger.info("Vulnerability store opened")
	try:
		yield store
	finally:
		logger.debug("Closing vulnerability store")
		store.close()


def http_client_resource(app_config: AppConfig, rate_limiter):
	if app_config.nvd_api_key:
		logger.info("Using NVD API key")
	else:
		logger.warning(
			f"No NVD API key configured - requests limited to {app_config.resolved_rate_limit}"
			f"/{app_config.rate_limit_window_seconds:g}s"
		)
	client = HttpClient(
		timeout_seconds=app_config.request_timeout_seconds,
		rate_limiter=rate_limiter,
		api_key=app_config.nvd_api_key,
		bearer_token=app_config.bearer_token,
		basic_auth=app_config.basic_auth,
	)
	try:
		yield client
	finally:
		logger.debug("Closing HTTP client")
		client.close()


def rate_limiter_factory(app_config: AppConfig, cache):
	return SlidingWindowRateLimiter(
		max_requests=app_config.resolved_rate_limit,
		window_seconds=app_config.rate_limit_window_seconds,
		cache=cache,
		namespace=rate_limit_namespace(app_config.nvd_api_key),
	)


def sync_policy_factory(app_config: AppConfig) -> SyncPolicy:
	return SyncPolicy(
		valid_for_hours=app_config.valid_for_hours,
		max_incremental_days=app_config.max_incremental_days,
		max_retry_count=app_config.max_retry_count,
		backoff_base_seconds=app_config.backoff_base_seconds,
		backoff_max_seconds=app_config.backoff_max_seconds,
		api_delay_seconds=app_config.api_delay_seconds,
		sync_lock_stale_minutes=app_config.sync_lock_stale_minutes,
	)


class Container(containers.DeclarativeContainer):
	app_config = providers.Singleton(AppConfig)

	clock = providers.Singleton(SystemClock)

	cache = providers.Resource(cache_resource, cache_dir=app_config.provided.cache_dir)

	store = providers.Resource(store_resource, app_config=app_config, clock=clock)

	rate_limiter = providers.Singleton(rate_limiter_factory, app_config=app_config, cache=cache)

	http_client = providers.Resource(http_client_resource, app_config=app_config, rate_limiter=rate_limiter)

	ecosystem_mapper = providers.Singleton(DescriptionEcosystemMapper)

	source = providers.Factory(
		NvdApiSource,
		http_client=http_client,
		endpoint=app_config.provided.nvd_api_endpoint,
		results_per_page=app_config.provided.results_per_page,
		ecosystem_mapper=ecosystem_mapper,
	)

	# shared by every reader; rebuild swaps the snapshot atomically
	index = providers.Singleton(InMemoryIdentificationIndex)

	extractors = providers.Singleton(
		ExtractorRegistry,
		extractors=providers.List(providers.Factory(FileNameExtractor)),
	)

	identifier_resolver = providers.Factory(
		IdentifierResolver,
		index=index,
		max_candidates=app_config.provided.max_candidates,
		candidate_score_ratio=app_config.provided.candidate_score_ratio,
	)

	vulnerability_resolver = providers.Factory(VulnerabilityResolver, store=store)

	# suppression/hint rules are supplied per call by the client
	preprocessors = providers.List()
	filters = providers.List()

	sync_policy = providers.Factory(sync_policy_factory, app_config=app_config)

	sync_uc = providers.Factory(
		SynchronizeCorpusUseCase,
		store=store,
		source=source,
		index=index,
		policy=sync_policy,
		clock=clock,
	)
	analyze_uc = providers.Factory(
		AnalyzeArtifactsUseCase,
		identifier_resolver=identifier_resolver,
		vulnerability_resolver=vulnerability_resolver,
		extractors=extractors,
		preprocessors=preprocessors,
		filters=filters,
		max_workers=app_config.provided.analysis_threads,
	)
	purge_uc = providers.Factory(
		PurgeCorpusUseCase,
		store=store,
		index=index,
		policy=sync_policy,
	)
