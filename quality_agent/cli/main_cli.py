"""
Interactive CLI for the data-quality pipeline
"""

import os
from typing import Optional

from dotenv import load_dotenv

from ..agents.main_agent import DataQualityPipeline, PipelineResult
from ..config import PipelineConfig, load_connection_descriptor
from ..database.models import SchemaModel
from ..errors import PipelineError


def _print_schema(schema: SchemaModel, table_name: str):
    table = schema.find_table(table_name)
    if table is None:
        print(f"Table '{table_name}' not found")
        return

    print(f"\n📋 Schema for {table.full_name}:")
    print(f"Rows: {table.estimated_row_count}    Quality score: {table.quality_score:.1f}")
    if table.quality_breakdown:
        b = table.quality_breakdown
        print(f"  (keys {b.primary_key_score}, completeness {b.completeness_score}, statistics "
              f"{b.statistics_score}, foreign keys {b.foreign_key_score}, types {b.type_appropriateness_score})")
    print("\nColumns:")
    for col in table.columns:
        flags = ' PK' if col.is_primary_key else ''
        flags += ' FK' if col.is_foreign_key else ''
        print(f"  - {col.name}: {col.data_type} {'NULL' if col.is_nullable else 'NOT NULL'}{flags}"
              f" [{col.data_classification.value}]")

    relations = schema.relations_for(table.full_name)
    if relations:
        print("\nRelationships:")
        for rel in relations:
            print(f"  - {rel.join_condition} [{rel.relation_type.value}]")


def _print_relationships(schema: SchemaModel):
    print("\n🔗 Table Relationships:")
    for rel in schema.ranked_relations[:20]:
        confidence = f" (confidence: {rel.confidence:.0%})" if rel.relation_type.value != 'FK_DECLARED' else ""
        print(f"  {rel.join_condition} [{rel.relation_type.value}, importance {rel.importance_score}]{confidence}")
    if len(schema.ranked_relations) > 20:
        print(f"  ... and {len(schema.ranked_relations) - 20} more relationships")


def _print_result(result: PipelineResult):
    summary = result.summary
    print("\n" + "=" * 60)
    print(f"📊 {summary.focus_table}: {summary.executed_count} of {summary.total_proposals} validations executed")
    quality = f"{summary.average_quality:.1f}%" if summary.average_quality is not None else "n/a"
    print(f"   Issues: {summary.total_issues}    Average quality: {quality}    "
          f"Performance: {summary.performance_rating}")
    print("-" * 60)
    for report in summary.reports:
        outcome = report.outcome_status or 'not executed'
        print(f"  #{report.sequence} [{report.trust_status.value}] {outcome:<13} "
              f"issues={report.issue_count:<6} {report.description}")
        if report.sql:
            print("      " + report.sql.replace("\n", "\n      "))
    print("-" * 60)
    for recommendation in summary.recommendations:
        print(f"  {recommendation}")
    print("=" * 60)


def main():
    """Interactive CLI interface"""
    print("""
    ╔══════════════════════════════════════════════════════════╗
    ║        🔎 Cross-Table Data Quality Agent 🔎              ║
    ╚══════════════════════════════════════════════════════════╝
    """)
    load_dotenv()

    print("\n📊 Available Database Types:")
    print("1. PostgreSQL")
    print("2. MySQL")
    print("3. SQLite")

    db_type_map = {'1': 'postgresql', '2': 'mysql', '3': 'sqlite'}
    selected_db = db_type_map.get(input("\nSelect database type (1-3): ").strip(), 'postgresql')

    try:
        connection = load_connection_descriptor(selected_db)
    except ValueError as e:
        print(f"❌ {e}. Please check your .env file.")
        return

    pipeline = DataQualityPipeline(PipelineConfig.from_env())
    credential: Optional[str] = os.getenv("GEMINI_API")

    print(f"\n🔍 Discovering {selected_db} schema...")
    try:
        schema = pipeline.discover(connection)
    except PipelineError as e:
        print(f"❌ Discovery failed: {e}")
        return

    metrics = schema.metrics
    print(f"\n✅ Found {len(schema.tables)} tables and {len(schema.ranked_relations)} relationships")
    if metrics:
        print(f"📈 Schema quality: {metrics.quality_rating} (average table score {metrics.average_quality_score})")

    print("\n📋 Available tables:")
    for i, table in enumerate(schema.tables[:10], 1):
        print(f"  {i}. {table.full_name} ({table.estimated_row_count} rows, {len(table.columns)} columns)")
    if len(schema.tables) > 10:
        print(f"  ... and {len(schema.tables) - 10} more tables")

    print("\n" + "=" * 60)
    print("💡 Commands:")
    print("  - 'RUN <table> [business context]' - Validate a focus table")
    print("  - 'SQL ON' / 'SQL OFF' - Show generated SQL in reports")
    print("  - 'SCHEMA <table>' - Show table schema")
    print("  - 'RELATIONSHIPS' - Show ranked relationships")
    print("  - 'REFRESH' - Rediscover the schema")
    print("  - 'EXIT' - Exit")
    print("=" * 60)

    include_sql = False
    while True:
        try:
            user_input = input("\n💬 Command: ").strip()
            if not user_input:
                continue
            command = user_input.upper()

            if command == 'EXIT':
                print("\n👋 Goodbye!")
                break

            elif command.startswith('SCHEMA'):
                parts = user_input.split()
                if len(parts) > 1:
                    _print_schema(schema, parts[1])
                else:
                    print("Usage: SCHEMA <table_name>")

            elif command == 'RELATIONSHIPS':
                _print_relationships(schema)

            elif command in ('SQL ON', 'SQL OFF'):
                include_sql = command == 'SQL ON'
                print(f"SQL display {'enabled' if include_sql else 'disabled'}")

            elif command == 'REFRESH':
                schema = pipeline.discover(connection)
                print(f"✅ Rediscovered {len(schema.tables)} tables")

            elif command.startswith('RUN'):
                parts = user_input.split(maxsplit=2)
                if len(parts) < 2:
                    print("Usage: RUN <table_name> [business context]")
                    continue
                business_context = parts[2] if len(parts) > 2 else None
                print(f"\n🚀 Running validations for {parts[1]}...")
                result = pipeline.run_pipeline(connection, parts[1], business_context=business_context,
                                               credential=credential, include_sql=include_sql)
                _print_result(result)

            else:
                print("Unknown command. Type 'RUN <table>' to validate a table.")

        except KeyboardInterrupt:
            print("\n\n👋 Session interrupted. Goodbye!")
            break
        except PipelineError as e:
            print(f"\n❌ Error: {str(e)}")
            print("Please try again or type 'EXIT' to quit")


if __name__ == "__main__":
    main()
