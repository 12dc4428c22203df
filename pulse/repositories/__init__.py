"""数据访问层.

Repository 只负责 SQL 执行与查询,不做业务编排、不返回 Response、不 commit.
"""
