#!/usr/bin/env python3
"""
Main CDK application for the ECR repository module

This module serves as the entry point for deploying ECR repositories.
It reads the settings file selected by the 'config' context value, builds the
configuration of every repository and creates one EcrRepositoryStack per
repository in the target account and region.
"""

import os
import logging
import cdk_nag
import aws_cdk as cdk

from aws_ecr_module.ecr_repository_stack import EcrRepositoryProps, EcrRepositoryStack
from aws_ecr_module.utils.config_utils import get_config, get_repository_configs, stack_id_for_repository
from aws_ecr_module.utils.logging_utils import configure_logging

DEFAULT_CONFIG_PATH = './configuration/settings.json'

configure_logging()
logger = logging.getLogger(__name__)

app = cdk.App()

config_path = app.node.try_get_context('config') or DEFAULT_CONFIG_PATH
settings = get_config(config_path)
stack_name = settings.get('stack_name', 'ecr-module')

env = cdk.Environment(
	account=os.getenv('CDK_DEFAULT_ACCOUNT'),
	region=settings.get('region') or os.getenv('CDK_DEFAULT_REGION'),
)

for repository_config in get_repository_configs(settings):
	props = EcrRepositoryProps.from_config(repository_config)
	EcrRepositoryStack(
		app,
		stack_id_for_repository(stack_name, props.name),
		props=props,
		env=env,
	)
	logger.info(f'Added stack for repository {props.name}')

# Adding cdk-nag checks
cdk.Aspects.of(app).add(cdk_nag.AwsSolutionsChecks())

app.synth()
