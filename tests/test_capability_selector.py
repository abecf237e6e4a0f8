import sys
import unittest
from pathlib import Path

# Ensure `src/` layout is importable when running tests without installing the package.
REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
sys.path.insert(0, str(SRC_DIR))


def _factory(name, *, operations=("generate",), models=(), custom=True, priority=100, create_error=None, async_create=False):
    from imagerouter.backends import ImageProvider, ProviderFactory
    from imagerouter.types import ImageGenerationResponse, ProviderCapabilities, ProviderMetadata

    metadata = ProviderMetadata(
        name=name,
        priority=priority,
        capabilities=ProviderCapabilities(
            example_models=list(models),
            supported_operations=list(operations),
            default_model=(list(models) or ["default"])[0],
            accepts_custom_models=custom,
        ),
    )

    class FakeProvider(ImageProvider):
        async def generate_image(self, request):
            return ImageGenerationResponse(images=[], model=self.model_or_default(request.model), provider=self.provider_name)

    class FakeFactory(ProviderFactory):
        def __init__(self):
            self.created = 0

        def get_metadata(self):
            return metadata

        def can_create(self, environment):
            return True

        def create(self, environment):
            self.created += 1
            if create_error is not None:
                raise create_error
            if async_create:
                async def _build():
                    return FakeProvider(metadata=metadata)

                return _build()
            return FakeProvider(metadata=metadata)

    return FakeFactory()


def _env():
    from imagerouter.environment import ProviderEnvironment

    return ProviderEnvironment(use_os_environ=False)


class TestScoreFactory(unittest.TestCase):
    def test_score_components(self):
        from imagerouter.selection import score_factory
        from imagerouter.types import SelectionContext

        f = _factory("A", models=("m-1",), priority=10)
        self.assertEqual(score_factory(f, SelectionContext()), 100 + 10)
        self.assertEqual(score_factory(f, SelectionContext(preferred_provider="a")), 1000 + 100 + 10)
        self.assertEqual(score_factory(f, SelectionContext(model="M-1")), 100 + 50 + 10)
        self.assertEqual(score_factory(f, SelectionContext(model="other")), 100 + 25 + 10)

    def test_unsupported_operation_scores_zero_even_when_preferred(self):
        from imagerouter.selection import score_factory
        from imagerouter.types import SelectionContext

        f = _factory("A")
        self.assertEqual(score_factory(f, SelectionContext(preferred_provider="A", operation="edit")), 0)

    def test_unknown_model_without_custom_support_scores_zero(self):
        from imagerouter.selection import score_factory
        from imagerouter.types import SelectionContext

        f = _factory("A", models=("m-1",), custom=False)
        self.assertEqual(score_factory(f, SelectionContext(model="m-2")), 0)

    def test_metadata_error_scores_zero(self):
        from imagerouter.selection import score_factory
        from imagerouter.types import SelectionContext

        f = _factory("A")
        f.get_metadata = lambda: (_ for _ in ()).throw(RuntimeError("bad metadata"))
        with self.assertLogs("imagerouter.selection", level="WARNING"):
            self.assertEqual(score_factory(f, SelectionContext()), 0)


class TestCapabilityScoringSelector(unittest.IsolatedAsyncioTestCase):
    async def test_higher_priority_wins(self):
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        selector = CapabilityScoringSelector(ProviderRegistry([_factory("Low", priority=100), _factory("High", priority=200)]))
        provider = await selector.select_provider(SelectionContext(), _env())
        self.assertEqual(provider.provider_name, "High")

    async def test_preferred_provider_beats_priority(self):
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        selector = CapabilityScoringSelector(ProviderRegistry([_factory("X", priority=1), _factory("Y", priority=500)]))
        provider = await selector.select_provider(SelectionContext(preferred_provider="x"), _env())
        self.assertEqual(provider.provider_name, "X")

    async def test_failed_provider_is_excluded(self):
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        selector = CapabilityScoringSelector(ProviderRegistry([_factory("Top", priority=500), _factory("Other")]))
        ctx = SelectionContext(preferred_provider="Top", failed_providers={"TOP"})
        options = await selector.get_provider_options(ctx, _env())
        self.assertEqual([p.provider_name for p in options], ["Other"])

    async def test_only_custom_model_factory_is_candidate(self):
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        reg = ProviderRegistry(
            [
                _factory("Strict1", models=("a",), custom=False),
                _factory("Open", models=("b",), custom=True),
                _factory("Strict2", models=("c",), custom=False),
            ]
        )
        options = await CapabilityScoringSelector(reg).get_provider_options(SelectionContext(model="zzz"), _env())
        self.assertEqual([p.provider_name for p in options], ["Open"])

    async def test_ties_keep_registration_order(self):
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        reg = ProviderRegistry([_factory("First"), _factory("Second"), _factory("Third")])
        selector = CapabilityScoringSelector(reg)
        ranked = selector.rank_factories(SelectionContext(), _env())
        self.assertEqual([r.factory.name for r in ranked], ["First", "Second", "Third"])
        self.assertEqual([r.score for r in ranked], [200, 200, 200])

    async def test_rank_factories_does_not_instantiate(self):
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        f = _factory("A")
        CapabilityScoringSelector(ProviderRegistry([f])).rank_factories(SelectionContext(), _env())
        self.assertEqual(f.created, 0)

    async def test_failing_create_is_dropped(self):
        from imagerouter.errors import BackendInstantiationError
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        reg = ProviderRegistry([_factory("Broken", priority=500, create_error=BackendInstantiationError("no key")), _factory("Ok")])
        selector = CapabilityScoringSelector(reg)
        with self.assertLogs("imagerouter.selection", level="WARNING"):
            options = await selector.get_provider_options(SelectionContext(), _env())
        self.assertEqual([p.provider_name for p in options], ["Ok"])

    async def test_awaitable_create_is_awaited(self):
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        reg = ProviderRegistry([_factory("Async", async_create=True)])
        provider = await CapabilityScoringSelector(reg).select_provider(SelectionContext(), _env())
        self.assertEqual(provider.provider_name, "Async")

    async def test_no_suitable_backend_lists_available_providers(self):
        from imagerouter.errors import NoSuitableBackendError
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        reg = ProviderRegistry([_factory("A"), _factory("B")])
        with self.assertRaises(NoSuitableBackendError) as ctx:
            await CapabilityScoringSelector(reg).select_provider(SelectionContext(operation="edit", model="m"), _env())
        self.assertEqual(
            str(ctx.exception),
            "No suitable providers found for operation 'edit' with model 'm'. Available providers: A, B",
        )
        self.assertEqual(ctx.exception.available, ["A", "B"])

    async def test_error_message_omits_model_when_absent(self):
        from imagerouter.errors import NoSuitableBackendError
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        reg = ProviderRegistry([_factory("A")])
        with self.assertRaises(NoSuitableBackendError) as ctx:
            await CapabilityScoringSelector(reg).select_provider(SelectionContext(failed_providers={"A"}), _env())
        self.assertEqual(str(ctx.exception), "No suitable providers found for operation 'generate'. Available providers: A")

    async def test_factory_with_broken_metadata_does_not_block_others(self):
        from imagerouter.registry import ProviderRegistry
        from imagerouter.selection import CapabilityScoringSelector
        from imagerouter.types import SelectionContext

        broken = _factory("Broken", priority=500)
        broken.get_metadata = lambda: (_ for _ in ()).throw(RuntimeError("bad metadata"))
        good = _factory("Good")
        selector = CapabilityScoringSelector(ProviderRegistry([broken, good]))

        with self.assertLogs("imagerouter.selection", level="WARNING"):
            provider = await selector.select_provider(SelectionContext(), _env())
        self.assertEqual(provider.provider_name, "Good")
        self.assertEqual(broken.created, 0)
        self.assertEqual([r.factory for r in selector.rank_factories(SelectionContext(), _env())], [good])


if __name__ == "__main__":
    unittest.main()
