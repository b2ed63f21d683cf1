from pathlib import Path

import pytest

from ebinterface_validation.cache import RuleSetCache
from ebinterface_validation.monitoring import PerformanceMonitor
from ebinterface_validation.pipeline import ValidationPipeline
from ebinterface_validation.presentation import PresentationTransformer
from ebinterface_validation.rule_compiler import RuleSetCompiler
from ebinterface_validation.rule_executor import RuleExecutor
from ebinterface_validation.schema_registry import SchemaValidatorRegistry
from ebinterface_validation.signature import SignatureVerificationAdapter

FIXTURES = Path(__file__).resolve().parent / "fixtures"
SCHEMA_DIR = FIXTURES / "schemas"
RULESET_DIR = FIXTURES / "rulesets"
INSTANCE_DIR = FIXTURES / "instances"


@pytest.fixture
def load_instance():
    def _load(name: str) -> bytes:
        return (INSTANCE_DIR / name).read_bytes()

    return _load


@pytest.fixture(scope="session")
def registry():
    return SchemaValidatorRegistry(SCHEMA_DIR, catalog_path=SCHEMA_DIR / "catalog.xml")


@pytest.fixture(scope="session")
def executor():
    return RuleExecutor()


@pytest.fixture
def monitor():
    return PerformanceMonitor()


@pytest.fixture
def compiler(monitor):
    return RuleSetCompiler(ruleset_dir=RULESET_DIR, cache=RuleSetCache(monitor=monitor))


@pytest.fixture
def make_pipeline(registry, compiler, executor, monitor):
    def _make(verifier=None, timeout=None):
        return ValidationPipeline(
            registry=registry,
            compiler=compiler,
            executor=executor,
            signature_adapter=SignatureVerificationAdapter(verifier, timeout=timeout),
            presentation=PresentationTransformer(),
            monitor=monitor,
        )

    return _make
