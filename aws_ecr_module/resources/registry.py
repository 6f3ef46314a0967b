"""
Registry-level resource creation for the ECR repository module.

ECR scanning, replication and pull-through cache settings apply to the whole
registry of the account and region, not to a single repository. Only one
stack per account and region should enable each of them.
"""

from typing import Any, Dict, List

from constructs import Construct
from aws_cdk import Stack, aws_ecr as ecr

REGISTRY_SCAN_TYPES = ('BASIC', 'ENHANCED')
REGISTRY_SCAN_FILTER_NAMES = ('REPOSITORY_NAME', 'PACKAGE_VULNERABILITY_SEVERITY')
FINDING_SEVERITIES = ('INFORMATIONAL', 'LOW', 'MEDIUM', 'HIGH', 'CRITICAL', 'UNDEFINED')


def validate_scan_filters(scan_filters: List[Dict[str, Any]]) -> None:
	"""
	Validate registry scan filters.

	Raises:
	    ValueError: If a filter has an unknown name or no values
	"""
	for scan_filter in scan_filters:
		name = scan_filter.get('name')
		if name not in REGISTRY_SCAN_FILTER_NAMES:
			raise ValueError(f'Registry scan filter name must be one of {", ".join(REGISTRY_SCAN_FILTER_NAMES)}')
		if not scan_filter.get('values'):
			raise ValueError(f'Registry scan filter {name} requires at least one value')
		if name == 'PACKAGE_VULNERABILITY_SEVERITY':
			unknown = [value for value in scan_filter['values'] if value not in FINDING_SEVERITIES]
			if unknown:
				raise ValueError(f'Unknown severities in registry scan filter: {", ".join(unknown)}')


def scan_filter_values(scan_filters: List[Dict[str, Any]], name: str) -> List[str]:
	"""Collect the values of all filters with the given name."""
	values = []
	for scan_filter in scan_filters:
		if scan_filter.get('name') == name:
			values.extend(scan_filter.get('values', []))
	return values


def create_registry_scanning_configuration(
	scope: Construct,
	repository_name: str,
	scan_type: str = 'ENHANCED',
	secret_scanning: bool = False,
	scan_filters: List[Dict[str, Any]] = None,
) -> ecr.CfnRegistryScanningConfiguration:
	"""
	Create the registry scanning configuration.

	Repository name filters become wildcard repository filters; without any
	the rule covers the module's repository. Enhanced scanning runs
	continuously when secret scanning is requested, otherwise on push.

	Args:
	    scope: The CDK construct scope
	    repository_name: Name of the module's repository
	    scan_type: 'BASIC' or 'ENHANCED'
	    secret_scanning: Whether continuous scanning is requested
	    scan_filters: List of {'name', 'values'} filters

	Returns:
	    ecr.CfnRegistryScanningConfiguration: The scanning configuration
	"""
	if scan_type not in REGISTRY_SCAN_TYPES:
		raise ValueError(f'registry_scan_type must be one of {", ".join(REGISTRY_SCAN_TYPES)}')

	scan_filters = scan_filters or []
	validate_scan_filters(scan_filters)

	repository_filters = scan_filter_values(scan_filters, 'REPOSITORY_NAME') or [repository_name]
	if secret_scanning and scan_type == 'ENHANCED':
		scan_frequency = 'CONTINUOUS_SCAN'
	else:
		scan_frequency = 'SCAN_ON_PUSH'

	return ecr.CfnRegistryScanningConfiguration(
		scope,
		'registry-scanning-configuration',
		scan_type=scan_type,
		rules=[
			ecr.CfnRegistryScanningConfiguration.ScanningRuleProperty(
				scan_frequency=scan_frequency,
				repository_filters=[
					ecr.CfnRegistryScanningConfiguration.RepositoryFilterProperty(
						filter=repository_filter,
						filter_type='WILDCARD',
					)
					for repository_filter in repository_filters
				],
			)
		],
	)


def create_pull_through_cache_rules(
	scope: Construct, cache_rules: List[Dict[str, Any]]
) -> List[ecr.CfnPullThroughCacheRule]:
	"""
	Create pull-through cache rules for upstream registries.

	Args:
	    scope: The CDK construct scope
	    cache_rules: List of rules with 'ecr_repository_prefix',
	        'upstream_registry_url' and an optional 'credential_arn'

	Returns:
	    The created pull-through cache rules
	"""
	created = []
	prefixes = set()
	for cache_rule in cache_rules:
		prefix = cache_rule.get('ecr_repository_prefix')
		upstream = cache_rule.get('upstream_registry_url')
		if not prefix or not upstream:
			raise ValueError('Pull-through cache rules require ecr_repository_prefix and upstream_registry_url')
		if prefix in prefixes:
			raise ValueError(f'Duplicate pull-through cache prefix {prefix!r}')
		prefixes.add(prefix)

		created.append(
			ecr.CfnPullThroughCacheRule(
				scope,
				f'pull-through-cache-{prefix.replace("/", "-")}',
				ecr_repository_prefix=prefix,
				upstream_registry_url=upstream,
				credential_arn=cache_rule.get('credential_arn'),
			)
		)

	return created


def create_replication_configuration(
	scope: Construct, repository_name: str, regions: List[str]
) -> ecr.CfnReplicationConfiguration:
	"""
	Create a cross-region replication configuration for the repository.

	Args:
	    scope: The CDK construct scope
	    repository_name: Name of the repository to replicate
	    regions: Destination regions

	Returns:
	    ecr.CfnReplicationConfiguration: The replication configuration
	"""
	if not regions:
		raise ValueError('replication_regions must list at least one region when replication is enabled')

	stack = Stack.of(scope)
	return ecr.CfnReplicationConfiguration(
		scope,
		'replication-configuration',
		replication_configuration=ecr.CfnReplicationConfiguration.ReplicationConfigurationProperty(
			rules=[
				ecr.CfnReplicationConfiguration.ReplicationRuleProperty(
					destinations=[
						ecr.CfnReplicationConfiguration.ReplicationDestinationProperty(
							region=region,
							registry_id=stack.account,
						)
						for region in regions
					],
					repository_filters=[
						ecr.CfnReplicationConfiguration.RepositoryFilterProperty(
							filter=repository_name,
							filter_type='PREFIX_MATCH',
						)
					],
				)
			]
		),
	)
