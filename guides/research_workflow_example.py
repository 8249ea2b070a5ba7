"""Research workflow example using stepwright.

Runs the template in ``research_template.yaml`` against the models in
``models.yaml``. Model calls go to pydantic-ai's ``TestModel`` so the example
runs without API keys; drop ``default_model`` to call the real providers.
"""

import asyncio
from pathlib import Path

from pydantic_ai.models.test import TestModel

from stepwright import WorkflowRunner, build_engine
from stepwright.cli_utils.loaders import load_model_file, load_template_file
from stepwright.persistence import get_model_catalog
from stepwright.providers import PydanticAIInvoker, StaticProviderAccess

HERE = Path(__file__).parent


async def main():
    catalog = get_model_catalog()
    for model in load_model_file(HERE / "models.yaml"):
        await catalog.save_model(model)

    invoker = PydanticAIInvoker(
        default_model=TestModel(
            custom_output_text=(
                "Perovskite cells keep improving in the lab. "
                "However, long-term stability still limits commercial use."
            )
        )
    )
    engine = build_engine(
        invoker=invoker,
        provider_access=StaticProviderAccess(["openai", "anthropic"]),
    )

    template = load_template_file(HERE / "research_template.yaml")
    report = await engine.register_template(template)
    print("Execution layers:", report.layers)

    workflow_id = await engine.create_workflow(
        "demo-user", template.id, input="perovskite solar cells"
    )
    async for frame in WorkflowRunner(engine).stream(workflow_id):
        print(frame, end="")

    workflow = await engine.resume_workflow(workflow_id)
    print("Final status:", workflow.status)
    print(f"Total cost: ${workflow.total_cost:.6f}")
    print("Summary:", workflow.context.output)


if __name__ == "__main__":
    asyncio.run(main())
