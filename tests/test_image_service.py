import sys
import unittest
from pathlib import Path

# Ensure `src/` layout is importable when running tests without installing the package.
REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
sys.path.insert(0, str(SRC_DIR))


def _service(*specs):
    """Service over recording fake providers; specs are (name, operations, priority)."""
    from imagerouter.backends import ImageProvider, ProviderFactory
    from imagerouter.environment import ProviderEnvironment
    from imagerouter.image_service import ImageGenerationService
    from imagerouter.registry import ProviderRegistry
    from imagerouter.types import GeneratedImage, ImageGenerationResponse, ProviderCapabilities, ProviderMetadata

    calls = []

    class RecordingProvider(ImageProvider):
        def _respond(self, kind, request):
            calls.append((self.provider_name, kind, request))
            model = self.model_or_default(getattr(request, "model", None))
            return ImageGenerationResponse(images=[GeneratedImage(url=f"https://{self.provider_name}/1.png")], model=model, provider=self.provider_name)

        async def generate_image(self, request):
            return self._respond("generate", request)

        async def edit_image(self, request):
            return self._respond("edit", request)

        async def create_variation(self, request):
            return self._respond("variation", request)

    class ConversationalProvider(RecordingProvider):
        async def generate_image_from_conversation(self, request):
            return self._respond("conversation", request)

    class FakeFactory(ProviderFactory):
        def __init__(self, name, operations, priority):
            self._metadata = ProviderMetadata(
                name=name,
                priority=priority,
                description=f"{name} test provider",
                capabilities=ProviderCapabilities(
                    example_models=[f"{name.lower()}-model"],
                    supported_operations=list(operations),
                    default_model=f"{name.lower()}-model",
                ),
            )

        def get_metadata(self):
            return self._metadata

        def can_create(self, environment):
            return environment.has(f"{self._metadata.name.upper()}_KEY")

        def create(self, environment):
            cls = ConversationalProvider if "generate_from_conversation" in self._metadata.capabilities.supported_operations else RecordingProvider
            return cls(metadata=self._metadata)

    factories = [FakeFactory(*s) for s in specs]
    values = {f"{s[0].upper()}_KEY": "x" for s in specs}
    env = ProviderEnvironment(values=values, use_os_environ=False)
    return ImageGenerationService(registry=ProviderRegistry(factories), environment=env), calls


class TestImageGenerationService(unittest.IsolatedAsyncioTestCase):
    async def test_generate_selects_and_calls_provider(self):
        service, calls = _service(("Alpha", ["generate"], 100), ("Beta", ["generate"], 200))
        out = await service.generate_image({"prompt": "a cat", "size": "1024x1024", "quality": "hd", "numberOfImages": "2"})

        self.assertEqual(out.provider, "Beta")
        self.assertEqual(out.images[0].url, "https://Beta/1.png")
        name, kind, request = calls[0]
        self.assertEqual((name, kind), ("Beta", "generate"))
        self.assertEqual(request.prompt, "a cat")
        self.assertEqual(request.size, "1024x1024")
        self.assertEqual(request.quality, "hd")
        self.assertEqual(request.number_of_images, 2)

    async def test_preferred_provider_and_model_are_honoured(self):
        service, calls = _service(("Alpha", ["generate"], 100), ("Beta", ["generate"], 200))
        out = await service.generate_image({"prompt": "x", "provider": "alpha", "model": "custom-1"})
        self.assertEqual(out.provider, "Alpha")
        self.assertEqual(out.model, "custom-1")

    async def test_invalid_arguments_never_reach_a_provider(self):
        from imagerouter.errors import ArgumentValidationError

        service, calls = _service(("Alpha", ["generate"], 100))
        with self.assertRaises(ArgumentValidationError) as ctx:
            await service.generate_image({"numberOfImages": 0, "quality": "ultra", "size": "huge"})
        self.assertEqual(len(ctx.exception.errors), 4)
        self.assertIn("Either 'prompt' or valid 'conversationJson' is required", ctx.exception.errors)
        self.assertEqual(calls, [])

    async def test_conversation_prefers_conversational_provider(self):
        service, calls = _service(("Plain", ["generate"], 500), ("Chat", ["generate", "generate_from_conversation"], 100))
        out = await service.generate_image_from_conversation({"conversationJson": '[{"role": "user", "text": "a boat"}]'})
        self.assertEqual(out.provider, "Chat")
        self.assertEqual(calls[0][1], "conversation")
        self.assertEqual(calls[0][2].conversation[0].text, "a boat")

    async def test_conversation_falls_back_to_prompt_generation(self):
        service, calls = _service(("Plain", ["generate"], 100))
        conv = '[{"role": "system", "text": "watercolor"}, {"role": "user", "text": "a boat"}]'
        out = await service.generate_image_from_conversation({"conversationJson": conv})
        self.assertEqual(out.provider, "Plain")
        name, kind, request = calls[0]
        self.assertEqual(kind, "generate")
        self.assertEqual(request.prompt, "watercolor\na boat")

    async def test_generate_with_only_conversation_uses_conversation_flow(self):
        service, calls = _service(("Chat", ["generate", "generate_from_conversation"], 100))
        await service.generate_image({"conversationJson": [{"role": "user", "text": "a boat"}]})
        self.assertEqual(calls[0][1], "conversation")

    async def test_edit_routes_to_edit_capable_provider(self):
        service, calls = _service(("Gen", ["generate"], 900), ("Editor", ["generate", "edit"], 100))
        out = await service.edit_image({"prompt": "add a hat", "image": "https://example.com/a.png", "mask": "aGVsbG8="})
        self.assertEqual(out.provider, "Editor")
        name, kind, request = calls[0]
        self.assertEqual(kind, "edit")
        self.assertEqual(request.image, "https://example.com/a.png")
        self.assertEqual(request.mask, "aGVsbG8=")
        self.assertEqual(request.prompt, "add a hat")

    async def test_edit_requires_image(self):
        from imagerouter.errors import ArgumentValidationError
        from imagerouter.image_service import IMAGE_REQUIRED_ERROR

        service, calls = _service(("Editor", ["edit"], 100))
        with self.assertRaises(ArgumentValidationError) as ctx:
            await service.edit_image({"prompt": "add a hat"})
        self.assertEqual(ctx.exception.errors, [IMAGE_REQUIRED_ERROR])
        self.assertEqual(calls, [])

    async def test_edit_requires_prompt_text_even_with_conversation(self):
        from imagerouter.errors import ArgumentValidationError
        from imagerouter.image_service import PROMPT_TEXT_REQUIRED_ERROR

        service, calls = _service(("Editor", ["edit"], 100))
        args = {"image": "https://example.com/a.png", "conversationJson": '[{"role":"user","text":"x"}]'}
        with self.assertRaises(ArgumentValidationError) as ctx:
            await service.edit_image(args)
        self.assertEqual(ctx.exception.errors, [PROMPT_TEXT_REQUIRED_ERROR])
        self.assertEqual(calls, [])

        with self.assertRaises(ArgumentValidationError) as ctx:
            await service.edit_image({"image": "https://example.com/a.png", "prompt": "  "})
        self.assertEqual(len(ctx.exception.errors), 1)
        self.assertEqual(calls, [])

    async def test_variation_does_not_require_prompt(self):
        service, calls = _service(("Var", ["variation"], 100))
        out = await service.create_variation({"image": "aGVsbG8=", "numberOfImages": 3})
        self.assertEqual(out.provider, "Var")
        name, kind, request = calls[0]
        self.assertEqual(kind, "variation")
        self.assertEqual(request.number_of_images, 3)

    async def test_variation_still_validates_other_rules(self):
        from imagerouter.errors import ArgumentValidationError
        from imagerouter.image_service import IMAGE_REQUIRED_ERROR

        service, _ = _service(("Var", ["variation"], 100))
        with self.assertRaises(ArgumentValidationError) as ctx:
            await service.create_variation({"numberOfImages": 20})
        self.assertEqual(ctx.exception.errors, ["NumberOfImages must be between 1 and 10", IMAGE_REQUIRED_ERROR])

    async def test_no_capable_provider_raises(self):
        from imagerouter.errors import NoSuitableBackendError

        service, _ = _service(("Gen", ["generate"], 100))
        with self.assertRaises(NoSuitableBackendError) as ctx:
            await service.create_variation({"image": "aGVsbG8="})
        self.assertIn("Available providers: Gen", str(ctx.exception))


class TestListProviders(unittest.TestCase):
    def test_lists_every_registered_provider_with_availability(self):
        from imagerouter.environment import ProviderEnvironment

        service, _ = _service(("Alpha", ["generate"], 100), ("Beta", ["edit"], 50))
        rows = service.list_providers()
        self.assertEqual([r["name"] for r in rows], ["Alpha", "Beta"])
        self.assertTrue(all(r["available"] for r in rows))
        self.assertEqual(rows[1]["capabilities"]["supported_operations"], ["edit"])

        rows = service.list_providers(ProviderEnvironment(values={"ALPHA_KEY": "x"}, use_os_environ=False))
        self.assertEqual([r["available"] for r in rows], [True, False])


if __name__ == "__main__":
    unittest.main()
