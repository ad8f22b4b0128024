"""Simple example running a two-step REST workflow."""

import asyncio

from apiflow import RunContext, WorkflowEngine


async def main():
    """Create a post, then read it back using the id from step 0."""
    engine = WorkflowEngine()

    workflow = {
        "name": "create-and-read-post",
        "steps": [
            {
                "order": 0,
                "name": "create post",
                "apiRequest": {
                    "protocol": "rest",
                    "method": "POST",
                    "endpoint": "https://jsonplaceholder.typicode.com/posts",
                    "body": {"title": "{{title}}", "userId": 1},
                },
                "assertions": [{"type": "statusCode", "expected": 201}],
            },
            {
                "order": 1,
                "name": "read user posts",
                "apiRequest": {
                    "protocol": "rest",
                    "method": "GET",
                    "endpoint": "https://jsonplaceholder.typicode.com/posts?userId={{userId}}",
                },
                "variableMappings": [
                    {"sourceStep": 0, "sourcePath": "$.userId", "targetVariable": "userId"}
                ],
            },
        ],
    }

    result = await engine.run_workflow(
        workflow, RunContext(record_history=False, variables={"title": "hello"})
    )

    print(f"Workflow {result.workflow_name}: {'SUCCESS' if result.success else 'FAILED'}")
    for step in result.steps:
        status = step.response.status_code if step.response else "-"
        print(f"  [{step.step_order}] {step.step_name}: {status} in {step.duration}ms")


if __name__ == "__main__":
    asyncio.run(main())
