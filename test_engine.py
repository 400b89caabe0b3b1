import unittest
from unittest import mock

from sqlalchemy import event, func, select, text
from sqlalchemy.exc import OperationalError

from app import create_app
from engine import (
    add_content,
    reconcile_associations,
    remove_content,
    reorder_content,
    update_collection,
    update_content,
)
from errors import Conflict, Internal, InvalidArgument, NotFound
from models import (
    db,
    Camera,
    Collection,
    CollectionContent,
    CollectionType,
    Content,
    ImageContent,
    Tag,
    TextContent,
)
from ordering import is_dense


class EngineTestCase(unittest.TestCase):
    def setUp(self):
        self.app = create_app('testing')
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.create_all()

        self.collection = self.make_collection('Iceland Winter', 'iceland-winter')
        self.images = [ImageContent(title=f'Frame {n}', image_url_web=f'https://cdn.test/{n}.jpg') for n in range(4)]
        db.session.add_all(self.images)
        db.session.flush()
        for position, image in enumerate(self.images):
            db.session.add(CollectionContent(
                collection_id=self.collection.id, content_id=image.id, order_index=position
            ))
        db.session.commit()
        self.ids = [image.id for image in self.images]

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def make_collection(self, title, slug, collection_type=CollectionType.PORTFOLIO):
        collection = Collection(type=collection_type, title=title, slug=slug)
        db.session.add(collection)
        db.session.commit()
        return collection

    def order(self, collection_id=None):
        rows = db.session.execute(
            select(CollectionContent.content_id)
            .where(CollectionContent.collection_id == (collection_id or self.collection.id))
            .order_by(CollectionContent.order_index)
        ).scalars()
        return list(rows)

    def indices(self, collection_id=None):
        return db.session.execute(
            select(CollectionContent.order_index)
            .where(CollectionContent.collection_id == (collection_id or self.collection.id))
        ).scalars().all()

    def version(self, collection_id=None):
        return db.session.execute(
            select(Collection.content_version).where(Collection.id == (collection_id or self.collection.id))
        ).scalar()

    def count_writes(self):
        statements = []

        def record(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith(('UPDATE', 'INSERT', 'DELETE')):
                statements.append(statement)

        event.listen(db.engine, 'before_cursor_execute', record)
        self.addCleanup(event.remove, db.engine, 'before_cursor_execute', record)
        return statements


class ReorderTestCase(EngineTestCase):
    def test_move_last_item_to_front(self):
        a, b, c, d = self.ids
        rows = reorder_content(self.collection.id, [(d, 0)])

        self.assertEqual([row['content_id'] for row in rows], [d, a, b, c])
        self.assertEqual([row['order_index'] for row in rows], [0, 1, 2, 3])
        self.assertEqual(self.order(), [d, a, b, c])
        self.assertEqual(self.version(), 1)

    def test_reorder_accepts_dicts(self):
        a, b, c, d = self.ids
        reorder_content(self.collection.id, [{'content_id': a, 'new_index': 3}])
        self.assertEqual(self.order(), [b, c, d, a])

    def test_identical_order_writes_nothing(self):
        writes = self.count_writes()
        reorder_content(self.collection.id, [(self.ids[0], 0), (self.ids[2], 2)])

        self.assertEqual(writes, [])
        self.assertEqual(self.version(), 0)

    def test_duplicate_targets_leave_order_untouched(self):
        with self.assertRaises(InvalidArgument):
            reorder_content(self.collection.id, [(self.ids[0], 0), (self.ids[1], 0)])
        self.assertEqual(self.order(), self.ids)
        self.assertEqual(self.version(), 0)

    def test_out_of_range_target_rejected(self):
        with self.assertRaises(InvalidArgument):
            reorder_content(self.collection.id, [(self.ids[0], 4)])
        self.assertEqual(self.order(), self.ids)

    def test_content_outside_collection_not_found(self):
        stray = ImageContent(title='Stray')
        db.session.add(stray)
        db.session.commit()
        with self.assertRaises(NotFound):
            reorder_content(self.collection.id, [(stray.id, 0)])

    def test_unknown_collection_not_found(self):
        with self.assertRaises(NotFound):
            reorder_content(9999, [])

    def test_placeholder_without_created_content_rejected(self):
        with self.assertRaises(InvalidArgument):
            reorder_content(self.collection.id, [(-1, 0)])

    def test_stale_expected_version_conflicts(self):
        reorder_content(self.collection.id, [(self.ids[3], 0)], expected_version=0)
        with self.assertRaises(Conflict):
            reorder_content(self.collection.id, [(self.ids[3], 1)], expected_version=0)
        self.assertEqual(self.order()[0], self.ids[3])
        self.assertEqual(self.version(), 1)

    def test_concurrent_commit_detected_and_rolled_back(self):
        import engine

        real_reorder = engine.coordinator.reorder

        def racing_reorder(collection_id, moves):
            # Another writer commits its change between our read and our write
            db.session.execute(
                text("UPDATE collections SET content_version = content_version + 1 WHERE id = :id"),
                {'id': collection_id},
            )
            return real_reorder(collection_id, moves)

        with mock.patch.object(engine.coordinator, 'reorder', side_effect=racing_reorder):
            with self.assertRaises(Conflict):
                reorder_content(self.collection.id, [(self.ids[3], 0)])

        self.assertEqual(self.order(), self.ids)
        self.assertEqual(self.version(), 0)

    def test_storage_failure_is_internal_and_rolled_back(self):
        import ordering

        failure = OperationalError("UPDATE collection_content", {}, Exception("disk I/O error"))
        with mock.patch.object(ordering, 'write_indices', side_effect=failure):
            with self.assertRaises(Internal):
                reorder_content(self.collection.id, [(self.ids[3], 0)])

        self.assertEqual(self.order(), self.ids)
        self.assertEqual(self.version(), 0)


class MembershipTestCase(EngineTestCase):
    def test_add_appends_at_next_index(self):
        extra = TextContent(body='Notes from the road')
        db.session.add(extra)
        db.session.commit()

        rows = add_content(self.collection.id, [extra.id])

        self.assertEqual(rows[-1], {
            'content_id': extra.id,
            'collection_id': self.collection.id,
            'order_index': 4,
            'visible': True,
        })
        self.assertEqual(self.version(), 1)

    def test_add_at_position_shifts_later_items(self):
        extra = TextContent(body='Intro')
        db.session.add(extra)
        db.session.commit()

        add_content(self.collection.id, [extra.id], insert_at=1, visible=False)

        self.assertEqual(self.order(), [self.ids[0], extra.id] + self.ids[1:])
        self.assertTrue(is_dense(self.indices()))
        row = db.session.execute(
            select(CollectionContent).where(CollectionContent.content_id == extra.id)
        ).scalar_one()
        self.assertFalse(row.visible)

    def test_add_rejects_duplicates_and_bad_positions(self):
        with self.assertRaises(InvalidArgument):
            add_content(self.collection.id, [self.ids[0]])

        extra = TextContent(body='Outro')
        db.session.add(extra)
        db.session.commit()
        with self.assertRaises(InvalidArgument):
            add_content(self.collection.id, [extra.id], insert_at=5)
        with self.assertRaises(NotFound):
            add_content(self.collection.id, [424242])
        self.assertEqual(self.order(), self.ids)

    def test_remove_compacts_and_keeps_content(self):
        rows = remove_content(self.collection.id, [self.ids[1]])

        self.assertEqual([row['content_id'] for row in rows], [self.ids[0], self.ids[2], self.ids[3]])
        self.assertEqual(sorted(self.indices()), [0, 1, 2])
        self.assertIsNotNone(db.session.get(Content, self.ids[1]))

    def test_remove_unknown_content_not_found(self):
        with self.assertRaises(NotFound):
            remove_content(self.collection.id, [self.ids[0], 424242])
        self.assertEqual(self.order(), self.ids)

    def test_shared_content_lives_in_two_collections(self):
        other = self.make_collection('Best Of', 'best-of')
        add_content(other.id, [self.ids[2]])
        remove_content(self.collection.id, [self.ids[2]])

        self.assertEqual(self.order(other.id), [self.ids[2]])
        self.assertNotIn(self.ids[2], self.order())

    def test_indices_stay_dense_across_operations(self):
        extra = [TextContent(body=f'Block {n}') for n in range(3)]
        db.session.add_all(extra)
        db.session.commit()

        add_content(self.collection.id, [extra[0].id], insert_at=0)
        remove_content(self.collection.id, [self.ids[1], self.ids[3]])
        add_content(self.collection.id, [extra[1].id, extra[2].id], insert_at=2)
        reorder_content(self.collection.id, [(extra[2].id, 0), (self.ids[0], 4)])

        self.assertTrue(is_dense(self.indices()))
        self.assertEqual(len(self.indices()), 5)


class UpdateCollectionTestCase(EngineTestCase):
    def test_scalar_fields_apply_partially(self):
        result = update_collection(self.collection.id, {'title': 'Iceland, Winter 2024', 'visible': False})

        self.assertEqual(result['title'], 'Iceland, Winter 2024')
        self.assertFalse(result['visible'])
        self.assertEqual(result['slug'], 'iceland-winter')

    def test_invalid_fields_rejected(self):
        with self.assertRaises(InvalidArgument):
            update_collection(self.collection.id, {'title': 'ab'})
        with self.assertRaises(InvalidArgument):
            update_collection(self.collection.id, {'content_per_page': 0})
        with self.assertRaises(InvalidArgument):
            update_collection(self.collection.id, {'slug': 'Not A Slug'})

    def test_new_text_block_placed_by_placeholder(self):
        result = update_collection(self.collection.id, {
            'new_text_blocks': [{'body': 'Day one on the ring road', 'format': 'markdown'}],
            'reorders': [{'content_id': -1, 'new_index': 0}],
        })

        first = result['content'][0]
        self.assertEqual(first['content_type'], 'TEXT')
        self.assertEqual(first['body'], 'Day one on the ring road')
        self.assertEqual(first['order_index'], 0)
        self.assertEqual([item['order_index'] for item in result['content']], [0, 1, 2, 3, 4])
        self.assertEqual(result['content_version'], 1)

    def test_unknown_placeholder_rolls_back_created_content(self):
        before = db.session.execute(select(func.count(Content.id))).scalar()
        with self.assertRaises(InvalidArgument):
            update_collection(self.collection.id, {
                'new_text_blocks': ['Only one'],
                'reorders': [{'content_id': -2, 'new_index': 0}],
            })
        self.assertEqual(db.session.execute(select(func.count(Content.id))).scalar(), before)
        self.assertEqual(self.order(), self.ids)

    def test_remove_and_reorder_in_one_call(self):
        a, b, c, d = self.ids
        result = update_collection(self.collection.id, {
            'remove_content': [b],
            'reorders': [{'content_id': d, 'new_index': 0}],
        })
        self.assertEqual([item['content_id'] for item in result['content']], [d, a, c])

    def test_expected_version_conflict(self):
        with self.assertRaises(Conflict):
            update_collection(self.collection.id, {'title': 'Changed title', 'expected_version': 3})
        self.assertEqual(db.session.get(Collection, self.collection.id).title, 'Iceland Winter')

    def test_tags_people_and_location(self):
        existing = Tag(name='Landscape')
        db.session.add(existing)
        db.session.commit()

        result = update_collection(self.collection.id, {
            'tags': {'new_value': ['landscape', 'Snow']},
            'people': {'new_value': ['Ari']},
            'location': {'new_value': 'Vik'},
        })

        self.assertEqual(sorted(tag['name'] for tag in result['tags']), ['Landscape', 'Snow'])
        self.assertEqual([person['name'] for person in result['people']], ['Ari'])
        self.assertEqual(result['location']['name'], 'Vik')
        self.assertEqual(db.session.execute(select(func.count(Tag.id))).scalar(), 2)

        result = update_collection(self.collection.id, {'location': {'remove': True}})
        self.assertIsNone(result['location'])

    def test_non_ascii_names_are_reused(self):
        other = self.make_collection('Best Of', 'best-of')
        first = update_collection(self.collection.id, {'location': {'new_value': 'Île de Ré'}})
        second = update_collection(other.id, {'location': {'new_value': 'île de ré'}})

        self.assertEqual(second['location']['id'], first['location']['id'])
        self.assertEqual(second['location']['name'], 'Île de Ré')

        update_collection(self.collection.id, {'tags': {'new_value': ['Émile']}})
        result = update_collection(other.id, {'tags': {'new_value': ['émile', 'ÉMILE']}})
        self.assertEqual([tag['name'] for tag in result['tags']], ['Émile'])
        self.assertEqual(db.session.execute(select(func.count(Tag.id))).scalar(), 1)

    def test_cover_image_rules(self):
        result = update_collection(self.collection.id, {'cover_image_id': self.ids[1]})
        self.assertEqual(result['cover_image_id'], self.ids[1])

        note = TextContent(body='Not a picture')
        db.session.add(note)
        db.session.commit()
        with self.assertRaises(InvalidArgument):
            update_collection(self.collection.id, {'cover_image_id': note.id})

        result = update_collection(self.collection.id, {'cover_image_id': 0})
        self.assertIsNone(result['cover_image_id'])

    def test_password_only_for_client_galleries(self):
        with self.assertRaises(InvalidArgument):
            update_collection(self.collection.id, {'password': 'long-enough-secret'})

        result = update_collection(self.collection.id, {
            'type': 'CLIENT_GALLERY',
            'password': 'long-enough-secret',
        })
        self.assertTrue(result['is_password_protected'])


class NestedCollectionTestCase(EngineTestCase):
    def setUp(self):
        super().setUp()
        self.child = self.make_collection('Reykjavik Nights', 'reykjavik-nights')

    def child_reference_id(self, result):
        return next(item['id'] for item in result['content'] if item['content_type'] == 'COLLECTION')

    def test_nest_move_and_unlink_child(self):
        result = update_collection(self.collection.id, {
            'collections': {'new_value': [{'collection_id': self.child.id}]},
        })
        reference_id = self.child_reference_id(result)
        self.assertEqual(result['content'][-1]['referenced_collection_id'], self.child.id)

        result = update_collection(self.collection.id, {
            'collections': {'prev': [{'collection_id': self.child.id, 'order_index': 0, 'visible': False}]},
        })
        self.assertEqual(result['content'][0]['id'], reference_id)
        self.assertFalse(result['content'][0]['visible'])

        result = update_collection(self.collection.id, {'collections': {'remove': [self.child.id]}})
        self.assertEqual([item['content_id'] for item in result['content']], self.ids)
        self.assertIsNotNone(db.session.get(Content, reference_id))

    def test_reference_content_reused_across_parents(self):
        other = self.make_collection('Best Of', 'best-of')
        first = update_collection(self.collection.id, {'collections': {'new_value': [{'collection_id': self.child.id}]}})
        second = update_collection(other.id, {'collections': {'new_value': [{'collection_id': self.child.id}]}})

        self.assertEqual(self.child_reference_id(first), self.child_reference_id(second))

    def test_remove_takes_collection_ids_only(self):
        result = update_collection(self.collection.id, {
            'collections': {'new_value': [{'collection_id': self.child.id}]},
        })
        reference_id = self.child_reference_id(result)
        self.assertIsNone(db.session.get(Collection, reference_id))

        result = update_collection(self.collection.id, {'collections': {'remove': [reference_id]}})
        self.assertEqual(self.child_reference_id(result), reference_id)

    def test_self_nesting_rejected(self):
        with self.assertRaises(InvalidArgument):
            update_collection(self.collection.id, {
                'collections': {'new_value': [{'collection_id': self.collection.id}]},
            })

    def test_unknown_child_not_found(self):
        with self.assertRaises(NotFound):
            update_collection(self.collection.id, {'collections': {'new_value': [{'collection_id': 9999}]}})


class ReconcileAssociationsTestCase(EngineTestCase):
    def test_keep_and_create_against_stored_tags(self):
        t1, t2, landscape = Tag(name='winter'), Tag(name='aurora'), Tag(name='Landscape')
        db.session.add_all([t1, t2, landscape])
        db.session.flush()
        image = self.images[0]
        image.tags = [t1, t2]
        db.session.commit()

        final = reconcile_associations('content', image.id, 'tags', {'prev': [t1.id], 'new_value': ['landscape']})

        self.assertEqual(final, {t1.id, landscape.id})
        self.assertEqual(db.session.execute(select(func.count(Tag.id))).scalar(), 3)
        self.assertEqual(sorted(tag.name for tag in db.session.get(Content, image.id).tags), ['Landscape', 'winter'])

    def test_round_trip_with_current_set_writes_nothing(self):
        tag = Tag(name='winter')
        db.session.add(tag)
        db.session.flush()
        self.images[0].tags = [tag]
        db.session.commit()

        writes = self.count_writes()
        final = reconcile_associations('content', self.images[0].id, 'tags', {'prev': [tag.id]})

        self.assertEqual(final, {tag.id})
        self.assertEqual(writes, [])

    def test_unknown_keep_id_not_found(self):
        with self.assertRaises(NotFound):
            reconcile_associations('collection', self.collection.id, 'tags', {'prev': [777]})

    def test_blank_name_rejected(self):
        with self.assertRaises(InvalidArgument):
            reconcile_associations('collection', self.collection.id, 'people', {'new_value': ['  ']})

    def test_unknown_relation_rejected(self):
        with self.assertRaises(InvalidArgument):
            reconcile_associations('collection', self.collection.id, 'camera', {'new_value': 'Leica'})


class UpdateContentTestCase(EngineTestCase):
    def test_metadata_and_single_references(self):
        image_id = self.ids[0]
        result = update_content(image_id, {
            'rating': 5,
            'iso': 400,
            'film_format': 'mm_120',
            'camera': {'new_value': 'Mamiya 7'},
            'film_type': {'new_value': 'Portra 400', 'default_iso': 400},
        })

        self.assertEqual(result['rating'], 5)
        self.assertEqual(result['film_format'], 'MM_120')
        self.assertEqual(result['camera']['name'], 'Mamiya 7')
        self.assertEqual(result['film_type']['default_iso'], 400)

        camera_id = result['camera']['id']
        result = update_content(self.ids[1], {'camera': {'new_value': 'mamiya 7'}})
        self.assertEqual(result['camera']['id'], camera_id)
        self.assertEqual(db.session.execute(select(func.count(Camera.id))).scalar(), 1)

        result = update_content(image_id, {'camera': {'remove': True, 'new_value': 'Ignored'}})
        self.assertIsNone(result['camera'])

    def test_rating_out_of_range_rejected(self):
        with self.assertRaises(InvalidArgument):
            update_content(self.ids[0], {'rating': 6})

    def test_image_fields_rejected_for_text(self):
        note = TextContent(body='Plain words')
        db.session.add(note)
        db.session.commit()
        with self.assertRaises(InvalidArgument):
            update_content(note.id, {'camera': {'new_value': 'Leica'}})

    def test_title_and_description_apply_to_any_content(self):
        note = TextContent(body='Plain words')
        db.session.add(note)
        db.session.commit()

        result = update_content(note.id, {'title': 'Day one', 'description': 'Arrival in Keflavik'})
        self.assertEqual(result['title'], 'Day one')
        self.assertEqual(result['description'], 'Arrival in Keflavik')

        with self.assertRaises(InvalidArgument):
            update_content(note.id, {'title': 'Day two', 'rating': 4})
        self.assertEqual(db.session.get(Content, note.id).title, 'Day one')

    def test_collection_membership_from_content_side(self):
        other = self.make_collection('Best Of', 'best-of')
        image_id = self.ids[3]

        result = update_content(image_id, {
            'collections': {
                'new_value': [{'collection_id': other.id}],
                'prev': [{'collection_id': self.collection.id, 'order_index': 0}],
            },
        })
        self.assertEqual(
            {(row['collection_id'], row['order_index']) for row in result['collections']},
            {(self.collection.id, 0), (other.id, 0)},
        )
        self.assertEqual(self.version(other.id), 1)

        result = update_content(image_id, {'collections': {'remove': [self.collection.id]}})
        self.assertEqual([row['collection_id'] for row in result['collections']], [other.id])
        self.assertTrue(is_dense(self.indices()))

    def test_unknown_content_not_found(self):
        with self.assertRaises(NotFound):
            update_content(424242, {'rating': 3})


if __name__ == '__main__':
    unittest.main()
