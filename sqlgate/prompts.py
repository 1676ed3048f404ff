"""
Prompt Templates for SqlGate.

Reusable prompts that steer a calling agent towards the gateway tools:
schema analysis, query construction and performance review.
"""

from dataclasses import dataclass, field
from typing import Any

from sqlgate.exceptions import InvalidParamsError, PromptNotFoundError

ANALYZE_SCHEMA_SYSTEM = (
    "You are a database schema analyst. Your task is to analyze the provided database "
    "schema and provide insights about structure, relationships, data integrity, and "
    "potential issues."
)

ANALYZE_SCHEMA_USER = """Please analyze the database schema for "{database}".

Focus area: {focus}

Provide analysis on:
1. **Schema Structure**: Overview of tables, relationships, and organization
2. **Data Integrity**: Primary keys, foreign keys, constraints, and referential integrity
3. **Indexing Strategy**: Index coverage, missing indexes, redundant indexes
4. **Naming Conventions**: Consistency in naming tables, columns, and constraints
5. **Normalization**: Assessment of normalization level and denormalization opportunities
6. **Potential Issues**: Missing constraints, orphaned records, data type inconsistencies
7. **Best Practices**: Recommendations for improvements

Use the sql_list_tables and sql_describe_table tools to gather the necessary information."""

QUERY_ASSISTANT_SYSTEM = """You are a SQL query assistant. Help users construct correct, efficient and safe SQL queries from natural language requirements.

Rules:
1. Generate ONLY read-only SELECT queries
2. Always include appropriate WHERE clauses for filtering
3. Use LIMIT (PostgreSQL) or TOP (SQL Server) to bound the result size
4. Use proper JOINs when querying multiple tables
5. Include ORDER BY when result ordering matters
6. Do not use SQL comments; the gateway rejects them"""

QUERY_ASSISTANT_USER = """I need help constructing a SQL query for the "{database}" database.

Requirement: {requirement}

Steps to follow:
1. Use sql_describe_table to understand the relevant table schemas
2. Construct the appropriate SQL SELECT query
3. Explain what the query does
4. Use sql_query to test the query if needed

Please provide the SQL query, an explanation, any assumptions made and possible optimizations."""

PERFORMANCE_REVIEW_SYSTEM = """You are a SQL performance optimization expert. Analyze SQL queries and execution plans to identify performance issues and suggest optimizations.

Focus areas: query structure, index usage, JOIN strategy and order, WHERE clause selectivity, SELECT * usage, subqueries versus JOINs, data types and the execution plan."""

PERFORMANCE_REVIEW_USER = """Please review the performance of this SQL query on the "{database}" database:

```sql
{query}
```

Steps to follow:
1. Use sql_get_query_plan to get the execution plan
2. Use sql_describe_table to understand the tables involved
3. Identify performance bottlenecks

Please provide:
1. **Current Query Analysis**
2. **Execution Plan Review**
3. **Performance Issues**
4. **Optimization Suggestions** (indexes, rewrites, JOIN and WHERE improvements)
5. **Optimized Query** if applicable"""


@dataclass
class PromptArgument:
    name: str
    description: str
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "required": self.required}


@dataclass
class PromptTemplate:
    """
    One named prompt.

    Attributes:
        name: Prompt name used by ``prompts/get``.
        description: Short human-readable summary.
        system_template: Instructions that frame the conversation.
        user_template: User message with ``{argument}`` placeholders.
        arguments: Declared arguments.
        defaults: Values for optional arguments that were not supplied.
    """

    name: str
    description: str
    system_template: str
    user_template: str
    arguments: list[PromptArgument] = field(default_factory=list)
    defaults: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [arg.to_dict() for arg in self.arguments],
        }

    def render(self, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Fill the template.

        Raises:
            InvalidParamsError: if a required argument is missing
        """
        values = {**self.defaults}
        for key, value in (arguments or {}).items():
            if value is not None and str(value).strip():
                values[key] = str(value)

        for arg in self.arguments:
            if arg.required and arg.name not in values:
                raise InvalidParamsError(f"Missing required argument for {self.name}: {arg.name}")

        text = f"{self.system_template}\n\n{self.user_template.format(**values)}"
        return {
            "description": f"{self.description} ({values['database']})",
            "messages": [{"role": "user", "content": {"type": "text", "text": text}}],
        }


PROMPTS: dict[str, PromptTemplate] = {
    prompt.name: prompt
    for prompt in (
        PromptTemplate(
            name="analyze-schema",
            description="Analyze a database schema for structure, relationships and issues",
            system_template=ANALYZE_SCHEMA_SYSTEM,
            user_template=ANALYZE_SCHEMA_USER,
            arguments=[
                PromptArgument("database", "Database to analyze"),
                PromptArgument("focus", "Area to focus on", required=False),
            ],
            defaults={"focus": "general overview"},
        ),
        PromptTemplate(
            name="query-assistant",
            description="Help construct a read-only SQL query from a requirement",
            system_template=QUERY_ASSISTANT_SYSTEM,
            user_template=QUERY_ASSISTANT_USER,
            arguments=[
                PromptArgument("database", "Database to query"),
                PromptArgument("requirement", "What the query should return"),
            ],
        ),
        PromptTemplate(
            name="performance-review",
            description="Review a query's execution plan and suggest optimizations",
            system_template=PERFORMANCE_REVIEW_SYSTEM,
            user_template=PERFORMANCE_REVIEW_USER,
            arguments=[
                PromptArgument("database", "Database the query runs on"),
                PromptArgument("query", "SQL query to review"),
            ],
        ),
    )
}


def list_prompts() -> list[dict[str, Any]]:
    return [prompt.to_dict() for prompt in PROMPTS.values()]


def get_prompt(name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Render a prompt by name.

    Raises:
        PromptNotFoundError: for an unknown prompt name
        InvalidParamsError: if a required argument is missing
    """
    prompt = PROMPTS.get(name)
    if prompt is None:
        raise PromptNotFoundError(name)
    return prompt.render(arguments)
