"""
Provisioning harness for the ECR repository module.

Drives the CDK CLI the way the integration tests need it: write a fixture
configuration with per-test variables, synthesize or deploy the app, collect
the stack outputs and destroy everything afterwards. Transient failures
(throttling, stacks still busy) are retried.
"""

import json
import logging
import os
import random
import re
import string
import subprocess
import tempfile
import time
from typing import Any, Dict, List, Optional

from aws_ecr_module.utils.config_utils import get_config, merge_config, output_key

logger = logging.getLogger(__name__)

DEFAULT_APP_COMMAND = 'python3 app.py'

DEFAULT_RETRYABLE_ERRORS = {
	r'Rate exceeded': 'API rate limit exceeded',
	r'ThrottlingException': 'Request throttled',
	r'TooManyRequestsException': 'Request throttled',
	r'RequestLimitExceeded': 'Request limit exceeded',
	r'is in [A-Z_]+_IN_PROGRESS state': 'Stack operation still in progress',
	r'connection reset by peer': 'Connection reset',
	r'TLS handshake timeout': 'TLS handshake timeout',
	r'Could not connect to the endpoint URL': 'Endpoint unreachable',
}


class CdkCommandError(RuntimeError):
	"""Raised when a CDK CLI command fails."""

	def __init__(self, message: str, command: List[str], returncode: int, stdout: str = '', stderr: str = ''):
		super().__init__(message)
		self.command = command
		self.returncode = returncode
		self.stdout = stdout
		self.stderr = stderr

	@property
	def output(self) -> str:
		return f'{self.stdout}\n{self.stderr}'


class CdkOptions:
	"""
	Options for running the CDK CLI against the module's app.

	Attributes:
	    app_dir (str): Directory containing app.py and cdk.json
	    config (Any): Fixture settings, either a path (relative to app_dir) or a dict
	    variables (Dict[str, Any]): Settings merged over the fixture
	    context (Dict[str, str]): Extra CDK context values
	    stacks (List[str]): Stacks to act on; all stacks when empty
	    app_command (str): Command CDK runs to synthesize the app
	    cdk_binary (str): CDK CLI executable
	    max_retries (int): Retries for retryable errors
	    time_between_retries (float): Seconds to wait between retries
	    retryable_errors (Dict[str, str]): Regex to description of retryable errors
	    env (Dict[str, str]): Extra environment variables for the CLI
	"""

	def __init__(
		self,
		*,
		app_dir: str,
		config: Any = None,
		variables: Optional[Dict[str, Any]] = None,
		context: Optional[Dict[str, str]] = None,
		stacks: Optional[List[str]] = None,
		app_command: str = DEFAULT_APP_COMMAND,
		cdk_binary: str = 'cdk',
		max_retries: int = 3,
		time_between_retries: float = 5,
		retryable_errors: Optional[Dict[str, str]] = None,
		env: Optional[Dict[str, str]] = None,
	):
		self.app_dir = app_dir
		self.config = config
		self.variables = dict(variables or {})
		self.context = dict(context or {})
		self.stacks = list(stacks or [])
		self.app_command = app_command
		self.cdk_binary = cdk_binary
		self.max_retries = max_retries
		self.time_between_retries = time_between_retries
		self.retryable_errors = dict(DEFAULT_RETRYABLE_ERRORS if retryable_errors is None else retryable_errors)
		self.env = dict(env or {})
		self.config_path: Optional[str] = None


def unique_id(length: int = 6) -> str:
	"""
	Generate a short random identifier for resource names.

	Names must be lowercase for ECR, so only lowercase letters and digits are used.
	"""
	alphabet = string.ascii_lowercase + string.digits
	return ''.join(random.choice(alphabet) for _ in range(length))


def write_config(options: CdkOptions) -> str:
	"""
	Write the effective settings file for a run.

	The fixture settings are merged with the options' variables and written
	to a temporary file that the app reads through the 'config' context key.

	Args:
	    options: Runner options

	Returns:
	    Path of the written settings file
	"""
	if isinstance(options.config, str):
		path = options.config if os.path.isabs(options.config) else os.path.join(options.app_dir, options.config)
		settings = get_config(path)
	else:
		settings = dict(options.config or {})

	settings = merge_config(settings, options.variables)

	if options.config_path is None:
		handle, options.config_path = tempfile.mkstemp(prefix='ecr-module-', suffix='.json')
		os.close(handle)

	with open(options.config_path, 'w') as config_file:
		json.dump(settings, config_file, indent=2)

	return options.config_path


def build_command(options: CdkOptions, action: str, extra_args: Optional[List[str]] = None) -> List[str]:
	"""
	Build the CDK CLI command line for an action.

	Args:
	    options: Runner options
	    action: CDK action ('synth', 'deploy', 'destroy')
	    extra_args: Additional arguments appended after the context flags

	Returns:
	    The command as a list of arguments
	"""
	command = [options.cdk_binary, action]
	command.extend(options.stacks or ['--all'])
	command.extend(['--app', options.app_command, '--no-color'])

	if options.config_path:
		command.extend(['--context', f'config={options.config_path}'])
	for key, value in options.context.items():
		command.extend(['--context', f'{key}={value}'])

	command.extend(extra_args or [])
	return command


def run_command(options: CdkOptions, command: List[str]) -> str:
	"""
	Run a CLI command once.

	Returns:
	    Combined stdout and stderr

	Raises:
	    CdkCommandError: If the command exits with a non-zero status
	"""
	env = dict(os.environ)
	env.update(options.env)

	logger.info(f'Running command: {" ".join(command)}')
	result = subprocess.run(command, cwd=options.app_dir, env=env, capture_output=True, text=True)

	for line in result.stdout.splitlines():
		logger.debug(line)

	if result.returncode != 0:
		raise CdkCommandError(
			f'Command {" ".join(command[:2])} failed with exit code {result.returncode}',
			command=command,
			returncode=result.returncode,
			stdout=result.stdout,
			stderr=result.stderr,
		)

	return f'{result.stdout}\n{result.stderr}'


def find_retryable_error(options: CdkOptions, output: str) -> Optional[str]:
	"""Return the description of the first retryable error found in the output."""
	for pattern, description in options.retryable_errors.items():
		if re.search(pattern, output):
			return description
	return None


def run_with_retries(options: CdkOptions, action: str, extra_args: Optional[List[str]] = None) -> str:
	"""
	Run a CDK action, retrying on known transient errors.

	Args:
	    options: Runner options
	    action: CDK action
	    extra_args: Additional CLI arguments

	Returns:
	    Combined command output

	Raises:
	    CdkCommandError: If the command fails with a non-retryable error
	        or keeps failing after all retries
	"""
	command = build_command(options, action, extra_args)

	attempt = 0
	while True:
		try:
			return run_command(options, command)
		except CdkCommandError as e:
			reason = find_retryable_error(options, e.output)
			if reason is None or attempt >= options.max_retries:
				logger.error(f'cdk {action} failed: {e.stderr.strip()}')
				raise
			attempt += 1
			logger.warning(
				f'cdk {action} failed with retryable error ({reason}), '
				f'retry {attempt}/{options.max_retries} in {options.time_between_retries}s'
			)
			time.sleep(options.time_between_retries)


def synth(options: CdkOptions) -> str:
	"""Synthesize the app, validating the configuration without deploying."""
	write_config(options)
	return run_with_retries(options, 'synth', ['--quiet'])


def deploy(options: CdkOptions) -> Dict[str, Dict[str, str]]:
	"""
	Deploy the app and return the stack outputs.

	Returns:
	    Outputs keyed by stack name then output key
	"""
	write_config(options)

	handle, outputs_file = tempfile.mkstemp(prefix='ecr-module-outputs-', suffix='.json')
	os.close(handle)
	try:
		run_with_retries(options, 'deploy', ['--require-approval', 'never', '--outputs-file', outputs_file])
		with open(outputs_file, 'r') as f:
			content = f.read()
		return json.loads(content) if content.strip() else {}
	finally:
		os.remove(outputs_file)


def destroy(options: CdkOptions) -> None:
	"""Destroy every stack deployed with these options."""
	write_config(options)
	try:
		run_with_retries(options, 'destroy', ['--force'])
	finally:
		if options.config_path and os.path.exists(options.config_path):
			os.remove(options.config_path)
			options.config_path = None


def output(outputs: Dict[str, Dict[str, str]], name: str, stack: Optional[str] = None) -> str:
	"""
	Look up a stack output by its snake_case name.

	Args:
	    outputs: Outputs returned by deploy()
	    name: Output name such as 'repository_url'
	    stack: Stack name; when omitted the output must be unique across stacks

	Returns:
	    The output value

	Raises:
	    KeyError: If the output is missing or ambiguous
	"""
	key = output_key(name)

	if stack is not None:
		stack_outputs = outputs.get(stack, {})
		if key not in stack_outputs:
			raise KeyError(f'Output {name} not found in stack {stack}')
		return stack_outputs[key]

	matches = [stack_outputs[key] for stack_outputs in outputs.values() if key in stack_outputs]
	if not matches:
		raise KeyError(f'Output {name} not found')
	if len(matches) > 1:
		raise KeyError(f'Output {name} is defined by {len(matches)} stacks, pass the stack name')
	return matches[0]


def output_map(outputs: Dict[str, Dict[str, str]], name: str, stack: Optional[str] = None) -> Dict[str, Any]:
	"""Look up a JSON map output and decode it."""
	return json.loads(output(outputs, name, stack))


class CdkDeployment:
	"""
	Context manager deploying the app on entry and destroying it on exit.

	The stacks are destroyed even when deployment or the test body fails, so
	a partially created stack never outlives the test.
	"""

	def __init__(self, options: CdkOptions):
		self.options = options
		self.outputs: Dict[str, Dict[str, str]] = {}

	def __enter__(self) -> 'CdkDeployment':
		try:
			self.outputs = deploy(self.options)
		except Exception:
			destroy(self.options)
			raise
		return self

	def __exit__(self, exc_type, exc_value, traceback) -> None:
		destroy(self.options)

	def output(self, name: str, stack: Optional[str] = None) -> str:
		return output(self.outputs, name, stack)

	def output_map(self, name: str, stack: Optional[str] = None) -> Dict[str, Any]:
		return output_map(self.outputs, name, stack)
